[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fileid"
version = "0.1.0"
description = "Magic-file parsing, pattern strength ordering and text description helpers for file type identification"
requires-python = ">=3.10"
dependencies = []
keywords = ["magic", "file type", "identification", "mime", "text", "cdf"]
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
    "Topic :: System :: Filesystems",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
fileid-magic = "fileid.magic_db:main"

[tool.hatch.build.targets.wheel]
packages = ["fileid"]

[tool.pytest.ini_options]
addopts = "-ra"
