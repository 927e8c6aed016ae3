[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ccasim"
version = "0.1.0"
description = "Simulation of Arm Confidential Compute worlds, granule protection tables, realms and TrustZone memory isolation"
requires-python = ">=3.10"
dependencies = []
keywords = ["arm", "cca", "rme", "granule protection table", "realm", "trustzone", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ccasim = "ccasim.cli:main"
ccasim-gpt-check = "ccasim.benchmark:main"
ccasim-trustzone = "ccasim.trustzone:main"

[tool.hatch.build.targets.wheel]
packages = ["ccasim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
