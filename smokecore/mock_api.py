import base64
import io
import json
import logging
import re
import zipfile
from datetime import datetime, timezone

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Mount, Route

from smokecore.const import DEFAULT_PROFILE, MOCK_FREECAD_ROOT

logger = logging.getLogger(__name__)

ANALYZE_STAGES = ['create', 'drawing', 'dfm', 'cost']
TEMPLATE_NAME_RE = re.compile(r'[a-zA-Z0-9_-]+')


class MockTemplateStore:
    templates: dict[str, dict]

    def __init__(self):
        self.templates = {}

    def reset(self):
        self.templates.clear()


mock_templates = MockTemplateStore()


def reset_mock_templates():
    mock_templates.reset()


def error(status: int, message: str) -> JSONResponse:
    return JSONResponse({'error': message}, status)


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def format_event(event: str, payload) -> str:
    return f'event: {event}\ndata: {json.dumps(payload)}\n\n'


def build_pack(include: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w', compression=zipfile.ZIP_STORED) as zf:
        zf.writestr('00_meta/readme.txt', 'mock export pack\n')
        if include.get('step', True):
            zf.writestr('01_model/mock.step', 'ISO-10303-21;\nEND-ISO-10303-21;\n')
        if include.get('svg', True):
            zf.writestr('02_drawing/mock-front.svg', '<svg></svg>')
        if include.get('dxf'):
            zf.writestr('02_drawing/mock-front.dxf', '0\nSECTION\n0\nEOF\n')
    return buf.getvalue()


async def health(request: Request):
    return JSONResponse({'status': 'ok', 'freecadRoot': MOCK_FREECAD_ROOT})


async def list_profiles(request: Request):
    return JSONResponse(
        [
            {'name': DEFAULT_PROFILE, 'label': 'Default', 'description': ''},
            {'name': 'sample_precision', 'label': 'Precision', 'description': ''},
        ]
    )


async def compare_profiles(request: Request):
    body = await read_body(request)
    if not body.get('configPath'):
        return error(400, 'configPath required')
    profile_a, profile_b = body.get('profileA'), body.get('profileB')
    if not profile_a or not profile_b:
        return error(400, 'profileA and profileB required')

    def result(name: str, score: int, unit_cost: int) -> dict:
        return {'name': name, 'dfm': {'score': score}, 'cost': {'unit_cost': unit_cost}}

    return JSONResponse(
        {
            'profileA': result(profile_a, 92, 12345),
            'profileB': result(profile_b, 88, 15800),
        }
    )


async def analyze(request: Request):
    body = await read_body(request)
    options = body.get('options') or {}
    drawing_paths = [{'format': 'svg', 'path': 'output/mock.svg'}]
    if options.get('dxfExport'):
        drawing_paths.append({'format': 'dxf', 'path': 'output/mock.dxf'})
    result = {
        'stages': ANALYZE_STAGES,
        'errors': [],
        'model': {'exports': [{'format': 'step', 'path': 'output/mock.step'}]},
        'drawing': {'drawing_paths': drawing_paths},
        'drawingSvg': '<svg></svg>',
        'dfm': {'score': 92},
        'cost': {'unit_cost': 12345},
    }

    async def events():
        for stage in ANALYZE_STAGES:
            yield format_event('stage', {'stage': stage, 'status': 'done'})
        yield format_event('complete', result)

    return StreamingResponse(
        events(),
        media_type='text/event-stream',
        headers={'Cache-Control': 'no-cache'},
    )


async def dfm(request: Request):
    await read_body(request)
    return JSONResponse({'score': 95, 'summary': 'mock'})


async def report(request: Request):
    await read_body(request)
    return JSONResponse({'pdfBase64': base64.b64encode(b'mock-report').decode()})


async def export_pack(request: Request):
    body = await read_body(request)
    pack = build_pack(body.get('include') or {})
    return JSONResponse(
        {'filename': 'mock-pack.zip', 'zipBase64': base64.b64encode(pack).decode()}
    )


async def step_import(request: Request):
    body = await read_body(request)
    if not body.get('filePath'):
        return error(400, 'filePath required')
    return JSONResponse(
        {
            'success': True,
            'analysis': {'part_type': 'mock'},
            'tomlString': 'name = "mock_part"',
            'configPath': 'configs/imports/mock-part.toml',
        }
    )


async def step_save_config(request: Request):
    body = await read_body(request)
    if not body.get('configPath') or not body.get('tomlString'):
        return error(400, 'configPath and tomlString required')
    return JSONResponse({'success': True})


def _template_name(request: Request) -> str | None:
    name = request.path_params['name']
    return name if TEMPLATE_NAME_RE.fullmatch(name) else None


async def list_templates(request: Request):
    store: MockTemplateStore = request.app.state.templates
    return JSONResponse(
        [
            {
                'name': name,
                'label': data.get('label', name),
                'description': data.get('description', ''),
            }
            for name, data in store.templates.items()
        ]
    )


async def get_template(request: Request):
    store: MockTemplateStore = request.app.state.templates
    if (name := _template_name(request)) is None:
        return error(400, 'Invalid name format (use alphanumeric, _, -)')
    if name not in store.templates:
        return error(404, 'Template not found')
    return JSONResponse({**store.templates[name], 'name': name})


async def create_template(request: Request):
    store: MockTemplateStore = request.app.state.templates
    body = await read_body(request)
    name = body.pop('name', None)
    if not name:
        return error(400, 'name required')
    if name == DEFAULT_PROFILE:
        return error(400, f'name {DEFAULT_PROFILE} is reserved')
    if not TEMPLATE_NAME_RE.fullmatch(name):
        return error(400, 'Invalid name format (use alphanumeric, _, -)')
    if name in store.templates:
        return error(409, 'Template already exists')
    timestamp = now()
    store.templates[name] = {
        'name': name,
        **body,
        'created': timestamp,
        'updated': timestamp,
    }
    return JSONResponse({'success': True, 'name': name})


async def update_template(request: Request):
    store: MockTemplateStore = request.app.state.templates
    if (name := _template_name(request)) is None:
        return error(400, 'Invalid name format (use alphanumeric, _, -)')
    if name not in store.templates:
        return error(404, 'Template not found')
    current = store.templates[name]
    store.templates[name] = {
        **current,
        **(await read_body(request)),
        'name': name,
        'created': current['created'],
        'updated': now(),
    }
    return JSONResponse({'success': True})


async def delete_template(request: Request):
    store: MockTemplateStore = request.app.state.templates
    if (name := _template_name(request)) is None:
        return error(400, 'Invalid name format (use alphanumeric, _, -)')
    if name == DEFAULT_PROFILE:
        return error(400, 'Cannot delete default template')
    if store.templates.pop(name, None) is None:
        return error(404, 'Template not found')
    return JSONResponse({'success': True})


async def not_found(request: Request, exc):
    logger.debug(f'No mock route for {request.method} {request.url.path}')
    return error(404, 'mock endpoint not found')


def create_mock_app(templates: MockTemplateStore | None = None) -> Starlette:
    app = Starlette(
        routes=[
            Mount(
                '/api',
                routes=[
                    Route('/health', health),
                    Route('/profiles', list_profiles),
                    Route('/profiles/compare', compare_profiles, methods=['POST']),
                    Route('/analyze', analyze, methods=['POST']),
                    Route('/dfm', dfm, methods=['POST']),
                    Route('/report', report, methods=['POST']),
                    Route('/export-pack', export_pack, methods=['POST']),
                    Route('/step/import', step_import, methods=['POST']),
                    Route('/step/save-config', step_save_config, methods=['POST']),
                    Route('/report-templates', list_templates),
                    Route('/report-templates', create_template, methods=['POST']),
                    Route('/report-templates/{name}', get_template),
                    Route('/report-templates/{name}', update_template, methods=['PUT']),
                    Route(
                        '/report-templates/{name}', delete_template, methods=['DELETE']
                    ),
                ],
            )
        ],
        exception_handlers={404: not_found, 405: not_found},
    )
    app.state.templates = templates if templates is not None else mock_templates
    return app
