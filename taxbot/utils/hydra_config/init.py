import os

from hydra import compose, initialize
from hydra.core.hydra_config import HydraConfig


def load_hydra_config(version_base=None, config_path="../../conf", config_name="config.yaml"):
    with initialize(version_base=version_base, config_path=config_path):
        cfg = compose(config_name=config_name, return_hydra_config=True)
        HydraConfig.instance().set_config(cfg)
    return cfg


def init_env(cfg):
    for item in cfg.get("env") or []:
        os.environ.setdefault(str(item.name), str(item.value))


conf = load_hydra_config()
init_env(conf)
