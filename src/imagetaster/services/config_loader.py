"""Configuration loader for imagetaster."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from imagetaster.errors import TasterError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "images",
        "ssh_user",
        "security",
        "volumes",
        "create_snapshot",
        "pass_on_suite_error",
        "log_dir",
        "log_file",
        "verbose",
        "network",
        "flavor",
        "keypair",
        "private_key",
        "public_key",
        "suite_path",
        "auth_url",
        "username",
        "password",
        "project_name",
        "user_domain_name",
        "project_domain_name",
        "region_name",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise TasterError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise TasterError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise TasterError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise TasterError(f"Unknown configuration keys: {unknown_list}")

        images = parsed.get("images")
        if images is not None and not isinstance(images, list):
            raise TasterError("Config key 'images' must be a list of image names.")

        return parsed
