# setup.py
from setuptools import setup, find_namespace_packages

setup(
    name="ShieldDuel",
    version="0.1.0",
    packages=find_namespace_packages(include=["common", "duel", "duel.*", "engine"]),
    py_modules=["server", "client"],
    install_requires=["panda3d"],
    extras_require={"test": ["pytest"]},
    options = {
        "build_apps": {
            "gui_apps":     {"Client": "client.py"},
            "console_apps": {"Server": "server.py"},
            "include_patterns": ["common/**","duel/**","engine/**","configs/**"],
            "exclude_patterns": ["**/__pycache__/**","**/*.pyc"],
            "plugins": ["pandagl","p3openal_audio"],
            "platforms": ["manylinux2014_x86_64","win_amd64","macosx_11_0_arm64"],
            "log_filename": None,
        }
    }
)
