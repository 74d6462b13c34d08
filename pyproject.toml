[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pubsubmw"
version = "0.1.0"
description = "A small TCP publish/subscribe broker and client with at-least-once delivery and multi-broker failover"
requires-python = ">=3.10"
dependencies = []
keywords = ["pubsub", "publish-subscribe", "broker", "messaging", "middleware", "json", "tcp", "failover"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pubsubmw-broker = "pubsubmw.broker_cli:main"
pubsubmw-demo = "pubsubmw.demo_cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pubsubmw"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
