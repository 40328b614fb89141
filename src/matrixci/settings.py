from __future__ import annotations
import os

CACHE_DIR = os.environ.get("MATRIXCI_CACHE_DIR", ".matrixci/cache")
ARTIFACT_DIR = os.environ.get("MATRIXCI_ARTIFACT_DIR", ".matrixci/artifacts")
RELEASE_DIR = os.environ.get("MATRIXCI_RELEASE_DIR", ".matrixci/releases")
WORKERS = int(os.environ["MATRIXCI_WORKERS"]) if os.environ.get("MATRIXCI_WORKERS") else None
WORKFLOW = os.environ.get("MATRIXCI_WORKFLOW", "matrixci_workflow.py")

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN", "")
GITHUB_REPOSITORY = os.environ.get("GITHUB_REPOSITORY", "")
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")
# finished runs kept in memory for GET /runs
KEEP_RUNS = int(os.environ.get("MATRIXCI_KEEP_RUNS", "100"))
