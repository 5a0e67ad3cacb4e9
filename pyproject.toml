[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "socksrelay"
version = "2.5.5"
description = "An asyncio SOCKS5 proxy server with CONNECT, BIND and UDP ASSOCIATE support"
requires-python = ">=3.10"
dependencies = []
keywords = ["socks", "socks5", "proxy", "server", "asyncio", "udp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
socksrelay = "socksrelay.server:main"

[tool.hatch.build.targets.wheel]
packages = ["socksrelay"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
