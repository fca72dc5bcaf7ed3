[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "docagent"
version = "0.1.0"
description = "Helpers for an LLM-driven official-document writing service: file text extraction, prompt assembly, a streaming chat API client, Markdown-to-PDF/DOCX rendering and signed download links."
requires-python = ">=3.10"
keywords = ["llm", "documents", "markdown", "pandoc", "sse", "docx", "pptx", "xlsx", "jwt"]
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
    "Topic :: Text Processing :: General",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "pyjwt",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["docagent"]

[tool.pytest.ini_options]
addopts = "-ra"
