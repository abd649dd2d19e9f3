[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loramesh"
version = "0.1.0"
description = "Peer-to-peer encrypted messaging over a LoRa link: packet framing, pairing, profiles and on-disk storage"
requires-python = ">=3.10"
dependencies = []
keywords = ["lora", "messaging", "chat", "pairing", "radio", "framing"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Communications",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["loramesh"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
