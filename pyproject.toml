[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kertical"
version = "0.1.0"
description = "Resource models and reconciliation helpers for external proxies and node port forwarding in Kubernetes clusters"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "networking", "controller", "port-forwarding", "endpointslice", "ingress"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kertical"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 120
target-version = "py310"

[tool.mypy]
python_version = "3.10"
