class SmokeError(Exception):
    pass


class ConfigurationError(SmokeError):
    pass


class HealthCheckTimeout(SmokeError):
    port: int

    def __init__(self, port: int):
        self.port = port
        super().__init__(f'backend health check failed on port {port}')


class StageHTTPError(SmokeError):
    stage: str

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


class StreamProtocolError(SmokeError):
    pass
