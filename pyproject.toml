[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sagaflow"
version = "0.1.0"
description = "Distributed transaction orchestration for order and product services over gRPC and Redis"
requires-python = ">=3.10"
keywords = ["distributed transactions", "saga", "orchestrator", "grpc", "redis", "microservices"]
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
]
dependencies = [
    "pyyaml",
    "redis",
    "grpcio",
    "sqlalchemy",
    "werkzeug",
    "requests",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
sagaflow-orchestrator = "sagaflow.orchestrator_app:main"
sagaflow-order = "sagaflow.order_app:main"
sagaflow-product = "sagaflow.product_app:main"

[tool.hatch.build.targets.wheel]
packages = ["sagaflow"]

[tool.pytest.ini_options]
addopts = "-ra"
