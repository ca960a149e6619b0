import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from smokecore.client import BackendClient
from smokecore.config import Config
from smokecore.const import DEFAULT_PROFILE, MOCK_STEP_PATH, SAMPLE_STEP
from smokecore.container import inspect_container
from smokecore.exceptions import (
    ConfigurationError,
    SmokeError,
    StageHTTPError,
    StreamProtocolError,
)
from smokecore.mock_api import MockTemplateStore, create_mock_app
from smokecore.schemas import (
    AnalyzeSummary,
    ExportPackSummary,
    ProfileCompareSummary,
    ProfileSummary,
    ReportSummary,
    RerunSummary,
    SmokeRun,
    StageSummary,
    StepSummary,
    TemplateCrudSummary,
)
from smokecore.supervisor import BackendSupervisor
from smokecore.utils import remove_quietly, write_artifact

logger = logging.getLogger(__name__)

ANALYZE_OPTIONS = {
    'dfm': True,
    'drawing': True,
    'tolerance': True,
    'cost': True,
    'dxfExport': True,
    'process': 'machining',
    'material': 'SS304',
    'batch': 100,
    'standard': 'KS',
}
REPORT_METADATA = {
    'part_name': 'Smoke Part',
    'drawing_number': 'SMOKE-001',
    'revision': 'A',
}
SMOKE_TEMPLATE = 'smoke_template'

Stage = Callable[[], Awaitable[StageSummary | None]]


def dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def has_dxf_output(analysis: dict) -> bool:
    paths = dig(analysis, 'drawing', 'drawing_paths')
    if not isinstance(paths, list):
        return False
    for entry in paths:
        if not isinstance(entry, dict):
            continue
        if entry.get('format') == 'dxf' or str(entry.get('path', '')).endswith('.dxf'):
            return True
    return False


class SmokePipeline:
    config: Config
    client: BackendClient
    supervisor: BackendSupervisor | None
    freecad_root: Path | None
    summary: dict[str, StageSummary]
    temp_files: list[Path]

    profile_names: list[str]
    analysis: dict | None
    report: dict | None

    def __init__(
        self,
        config: Config,
        client: BackendClient,
        supervisor: BackendSupervisor | None = None,
    ):
        self.config = config
        self.client = client
        self.supervisor = supervisor
        self.freecad_root = config.freecad_root
        self.summary = {}
        self.temp_files = []
        self.profile_names = []
        self.analysis = None
        self.report = None
        self._cleaned_up = False

    @property
    def config_path(self) -> str:
        return self.config.sample_config

    def stages(self) -> list[tuple[str, Stage]]:
        stages = [
            ('health', self.check_health),
            ('profile', self.list_profiles),
            ('profileCompare', self.compare_profiles),
            ('analyze', self.run_analysis),
            ('rerun', self.rerun_dfm),
            ('report', self.generate_report),
            ('exportPack', self.export_pack),
            ('step', self.import_step),
        ]
        if self.config.mock:
            stages.append(('templateCrud', self.template_crud))
        return stages

    async def run(self) -> SmokeRun:
        error = None
        try:
            for name, stage in self.stages():
                logger.info(f'Running stage {name}')
                result = await stage()
                if result is not None:
                    self.summary[name] = result
        except SmokeError as e:
            logger.error(f'Smoke run failed: {e}')
            error = str(e)
        except Exception as e:
            logger.exception('Unexpected error during smoke run')
            error = str(e) or repr(e)
        finally:
            await self.cleanup()

        backend_logs = None
        if error is not None and self.supervisor is not None and self.supervisor.owned:
            backend_logs = self.supervisor.logs.strip() or None
        return SmokeRun(
            ok=error is None,
            summary=self.summary,
            error=error,
            backend_logs=backend_logs,
            mode=self.config.mode,
        )

    async def cleanup(self):
        if self._cleaned_up:
            return
        self._cleaned_up = True
        for path in self.temp_files:
            remove_quietly(path)
        if self.supervisor is not None:
            try:
                await self.supervisor.shutdown()
            except Exception as e:
                logger.debug(f'Backend shutdown failed: {e!r}')

    def require_root(self) -> Path:
        if self.freecad_root is None:
            raise ConfigurationError(
                'Backend root is unknown: set FREECAD_ROOT or expose freecadRoot in /health'
            )
        return self.freecad_root

    async def check_health(self) -> None:
        if self.supervisor is not None:
            await self.supervisor.ensure_healthy()
        health = await self.client.health()
        if self.freecad_root is None and health.get('freecadRoot'):
            self.freecad_root = Path(health['freecadRoot'])
            logger.info(f'Using backend root {self.freecad_root}')

    async def list_profiles(self) -> ProfileSummary:
        profiles = await self.client.request('profile', '/profiles')
        if not isinstance(profiles, list):
            profiles = []
        self.profile_names = [
            p['name'] for p in profiles if isinstance(p, dict) and p.get('name')
        ]
        return ProfileSummary(
            count=len(profiles), has_default=DEFAULT_PROFILE in self.profile_names
        )

    async def compare_profiles(self) -> ProfileCompareSummary:
        profile_b = next(
            (name for name in self.profile_names if name != DEFAULT_PROFILE),
            DEFAULT_PROFILE,
        )
        result = await self.client.request(
            'profileCompare',
            '/profiles/compare',
            method='POST',
            body={
                'configPath': self.config_path,
                'profileA': DEFAULT_PROFILE,
                'profileB': profile_b,
                'options': {
                    'process': ANALYZE_OPTIONS['process'],
                    'material': ANALYZE_OPTIONS['material'],
                    'batch': ANALYZE_OPTIONS['batch'],
                },
            },
        )
        return ProfileCompareSummary(
            profile_a=DEFAULT_PROFILE,
            profile_b=profile_b,
            score_a=dig(result, 'profileA', 'dfm', 'score'),
            score_b=dig(result, 'profileB', 'dfm', 'score'),
        )

    async def run_analysis(self) -> AnalyzeSummary:
        analysis = await self.client.analyze(
            'analyze', {'configPath': self.config_path, 'options': ANALYZE_OPTIONS}
        )
        if not isinstance(analysis, dict):
            raise StreamProtocolError('/analyze complete payload is not an object')
        self.analysis = analysis
        errors = analysis.get('errors')
        return AnalyzeSummary(
            stages=analysis.get('stages') or [],
            has_model=bool(analysis.get('model')),
            has_drawing=bool(analysis.get('drawing')),
            has_dxf=has_dxf_output(analysis),
            has_dfm=bool(analysis.get('dfm')),
            has_cost=bool(analysis.get('cost')),
            errors=len(errors) if isinstance(errors, list) else 0,
        )

    async def rerun_dfm(self) -> RerunSummary:
        rerun = await self.client.request(
            'rerun',
            '/dfm',
            method='POST',
            body={
                'configPath': self.config_path,
                'process': ANALYZE_OPTIONS['process'],
                'standard': ANALYZE_OPTIONS['standard'],
            },
        )
        return RerunSummary(stage='dfm', success=bool(rerun), score=dig(rerun, 'score'))

    async def generate_report(self) -> ReportSummary:
        report = await self.client.request(
            'report',
            '/report',
            method='POST',
            body={
                'configPath': self.config_path,
                'analysisResults': self.analysis,
                'metadata': REPORT_METADATA,
                'sections': {
                    'model': True,
                    'drawing': True,
                    'dfm': True,
                    'tolerance': False,
                    'cost': True,
                    'bom': True,
                },
                'options': {'language': 'ko', 'disclaimer': True, 'signature': True},
            },
        )
        self.report = report if isinstance(report, dict) else {}
        return ReportSummary(
            success=bool(report), has_pdf_base64=bool(self.report.get('pdfBase64'))
        )

    async def export_pack(self) -> ExportPackSummary:
        exported = await self.client.request(
            'exportPack',
            '/export-pack',
            method='POST',
            body={
                'configPath': self.config_path,
                'partName': 'smoke_pack_part',
                'revision': 'A',
                'organization': 'smoke-test',
                'include': {
                    'step': True,
                    'svg': True,
                    'dxf': True,
                    'drawing_pdf': True,
                    'dfm': True,
                    'tolerance': False,
                    'cost': True,
                    'report': True,
                    'bom': True,
                },
                'analysisResults': self.analysis,
                'reportPdfBase64': (self.report or {}).get('pdfBase64'),
            },
        )
        zip_base64 = dig(exported, 'zipBase64') or ''
        container = inspect_container(zip_base64)
        return ExportPackSummary(
            success=bool(exported),
            filename=dig(exported, 'filename'),
            zip_bytes=container.size,
            entries=len(container.entries),
            has_dxf_entry=container.has_dxf,
            dxf_fallback=container.used_fallback,
        )

    def stage_step_file(self) -> Path:
        source = self.require_root() / SAMPLE_STEP
        if not source.is_file():
            raise ConfigurationError(f'Sample STEP file not found: {source}')
        fd, tmp = tempfile.mkstemp(prefix='freecad-desktop-smoke-', suffix='.step')
        os.close(fd)
        temp_step = Path(tmp)
        self.temp_files.append(temp_step)
        shutil.copyfile(source, temp_step)
        return temp_step

    async def import_step(self) -> StepSummary:
        if self.config.mock:
            step_path = MOCK_STEP_PATH
        else:
            step_path = str(self.stage_step_file())

        step = await self.client.request(
            'step', '/step/import', method='POST', body={'filePath': step_path}
        )
        config_path = dig(step, 'configPath')
        if config_path and not self.config.mock:
            self.temp_files.append(self.require_root() / config_path)

        await self.client.request(
            'step',
            '/step/save-config',
            method='POST',
            body={'configPath': config_path, 'tomlString': dig(step, 'tomlString')},
        )
        return StepSummary(
            success=bool(dig(step, 'success')),
            config_path=config_path,
            has_analysis=bool(dig(step, 'analysis')),
        )

    async def template_crud(self) -> TemplateCrudSummary:
        stage = 'templateCrud'
        path = f'/report-templates/{SMOKE_TEMPLATE}'
        operations = []

        await self.client.request(
            stage,
            '/report-templates',
            method='POST',
            body={
                'name': SMOKE_TEMPLATE,
                'label': 'Smoke Template',
                'description': 'created by smoke run',
                'sections': {'model': True, 'dfm': True, 'cost': True},
            },
        )
        operations.append('create')

        template = await self.client.request(stage, path)
        if dig(template, 'label') != 'Smoke Template':
            raise StageHTTPError(stage, f'{path} returned unexpected template')
        operations.append('read')

        await self.client.request(
            stage, path, method='PUT', body={'label': 'Smoke Template v2'}
        )
        template = await self.client.request(stage, path)
        if dig(template, 'label') != 'Smoke Template v2':
            raise StageHTTPError(stage, f'{path} update was not applied')
        operations.append('update')

        await self.client.request(stage, path, method='DELETE')
        operations.append('delete')

        resp = await self.client.send(stage, path)
        if resp.status_code != 404:
            raise StageHTTPError(
                stage, f'{path} still readable after delete (HTTP {resp.status_code})'
            )
        operations.append('verifyDeleted')

        return TemplateCrudSummary(success=True, name=SMOKE_TEMPLATE, operations=operations)


async def run_smoke(
    config: Config, *, transport: httpx.AsyncBaseTransport | None = None
) -> SmokeRun:
    if transport is None and config.mock:
        transport = httpx.ASGITransport(app=create_mock_app(MockTemplateStore()))

    async with httpx.AsyncClient(
        base_url=config.base_url, transport=transport, timeout=config.request_timeout
    ) as http:
        supervisor = None
        if not config.mock:
            supervisor = BackendSupervisor(
                http,
                config.backend_args,
                cwd=config.backend_cwd,
                port=config.backend_port,
                probe_interval=config.probe_interval,
                max_attempts=config.max_attempts,
                shutdown_timeout=config.shutdown_timeout,
            )
        pipeline = SmokePipeline(config, BackendClient(http), supervisor)
        run = await pipeline.run()

    try:
        write_artifact(config.output, run)
    except OSError as e:
        logger.error(f'Could not write smoke summary to {config.output}: {e}')
        run = run.model_copy(
            update={'ok': False, 'error': f'could not write {config.output}: {e}'}
        )
    return run
