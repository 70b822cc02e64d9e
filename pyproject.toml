[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcpserve"
version = "0.1.0"
description = "A Model Context Protocol server core: tools, prompts, resources, sessions and JSON-RPC dispatch."
requires-python = ">=3.10"
dependencies = []
keywords = ["mcp", "model-context-protocol", "json-rpc", "llm", "tools", "server"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mcpserve"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
