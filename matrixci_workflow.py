# matrixci_workflow.py
from matrixci import rust_workflow


def workflow():
    return rust_workflow()
