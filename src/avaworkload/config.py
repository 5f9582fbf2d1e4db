import os
import tomllib
from pathlib import Path

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

cfg = tomllib.loads(Path(config_file).read_text())

if nodes := os.getenv("AVALANCHE_NODES"):
    cfg["nodes"]["uris"] = [u.strip() for u in nodes.split(",") if u.strip()]

cfg["genesis"]["private_key"] = os.getenv("GENESIS_PRIVATE_KEY", cfg["genesis"]["private_key"])
cfg["timeout"]["acceptance"] = float(os.getenv("ACCEPTANCE_TIMEOUT", cfg["timeout"]["acceptance"]))
