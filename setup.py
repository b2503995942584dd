from pathlib import Path
from setuptools import setup, find_packages


BASEDIR = Path(__file__).parent.absolute()


def read(rel_path):
    with open(Path(BASEDIR, rel_path)) as stream:
        return stream.read()


def get_version(rel_path):
    for line in read(rel_path).splitlines():
        if line.startswith("__version__"):
            delim = '"' if '"' in line else "'"
            return line.split(delim)[1]
    else:
        raise RuntimeError("Unable to find version string.")


def read_requirements(requirements_file):
    contents = read(requirements_file)
    return [
        line
        for line in contents.splitlines()
        if line.strip() and not line.startswith("#")
    ]


setup(
    name="autotls",
    version=get_version("autotls/__about__.py"),
    description="Kubernetes controller provisioning TLS certificates for Ingresses",
    python_requires=">=3.9",
    packages=find_packages(include=["autotls", "autotls.*"]),
    install_requires=read_requirements("requirements/main.in"),
    extras_require={
        "dev": read_requirements("requirements/dev.in"),
        "test": read_requirements("requirements/dev.in"),
    },
    entry_points={
        "console_scripts": ["autotls-controller=autotls.controller.ingress.__main__:cli"]
    },
)
