EOCD_SIGNATURE = b'PK\x05\x06'
EOCD_SIZE = 22
MAX_COMMENT_LENGTH = 0xFFFF
CENTRAL_HEADER_SIGNATURE = 0x02014B50
CENTRAL_HEADER_SIZE = 46
UTF8_NAME_FLAG = 0x0800

DXF_SUFFIX = '.dxf'

DEFAULT_PORT = 18080
DEFAULT_SAMPLE_CONFIG = 'configs/examples/ks_flange.toml'
DEFAULT_OUTPUT = 'artifacts/smoke-core-summary.json'
DEFAULT_BACKEND_COMMAND = 'node backend/server.js'
DEFAULT_PROFILE = '_default'

SAMPLE_STEP = 'output/ks_flange.step'
MOCK_STEP_PATH = '/tmp/mock.step'
MOCK_FREECAD_ROOT = '/tmp/freecad-automation-mock'
