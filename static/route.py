from pathlib import Path


class Route:
    def __init__(self):
        mainpath = Path(__file__)
        self.YAML_path: Path = mainpath.parent.parent.joinpath('config', 'amdlconfig.yaml')
        self.logs_dir: Path = Path('logs')
        self.device_dir: Path = mainpath.parent.parent.joinpath('key', 'drm', 'device')

    def device_path(self, device_name: str) -> Path:
        return self.device_dir.joinpath(device_name)
