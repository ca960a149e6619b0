import json

from pydantic import BaseModel, ConfigDict, SerializeAsAny
from pydantic.alias_generators import to_camel
from typing import Literal


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StageSummary(CamelModel):
    pass


class ProfileSummary(StageSummary):
    count: int
    has_default: bool


class ProfileCompareSummary(StageSummary):
    profile_a: str
    profile_b: str
    score_a: float | None = None
    score_b: float | None = None


class AnalyzeSummary(StageSummary):
    stages: list[str]
    has_model: bool
    has_drawing: bool
    has_dxf: bool
    has_dfm: bool
    has_cost: bool
    errors: int


class RerunSummary(StageSummary):
    stage: str
    success: bool
    score: float | None = None


class ReportSummary(StageSummary):
    success: bool
    has_pdf_base64: bool


class ExportPackSummary(StageSummary):
    success: bool
    filename: str | None = None
    zip_bytes: int
    entries: int
    has_dxf_entry: bool
    dxf_fallback: bool


class StepSummary(StageSummary):
    success: bool
    config_path: str | None = None
    has_analysis: bool


class TemplateCrudSummary(StageSummary):
    success: bool
    name: str
    operations: list[str]


class SmokeRun(CamelModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    summary: dict[str, SerializeAsAny[StageSummary]]
    error: str | None = None
    backend_logs: str | None = None
    mode: Literal['mock', 'real'] = 'real'

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        data = self.model_dump(mode='json', by_alias=True)
        for key in ('error', 'backendLogs'):
            if data[key] is None:
                del data[key]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
