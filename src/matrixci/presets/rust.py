# presets/rust.py
# The project's own pipeline: build + clippy on macOS and Windows for every
# push, and a GitHub Release with both binaries for tag pushes.
from __future__ import annotations

from ..conditions import matrix_eq, tag_ref
from ..dsl import job, matrix, on, pull_request, push, sh, uses, wf
from ..workflow import Workflow

OSES = ["macos-latest", "windows-latest"]
PR_PATHS = ["Cargo.toml", "Cargo.lock", "lapce-**"]


def build_job(binary: str = "copycat", oses=OSES):
    return job(
        "build",
        uses("actions/checkout@v4"),
        sh("Update toolchain & add llvm-tools", "rustup update --no-self-update"),
        uses("Swatinem/rust-cache@v2", "Cache Rust dependencies"),
        sh("Fetch dependencies", "cargo fetch --locked"),
        sh("Build debug", "cargo build --frozen"),
        sh("Run doc tests", "cargo test --doc --workspace"),
        sh("Build release", "cargo build --release --frozen"),
        uses(
            "actions/upload-artifact@v4",
            "Upload release artifact for Windows",
            with_={"name": "binary-windows", "path": f"target/release/{binary}.exe"},
            if_=matrix_eq("os", "windows-latest"),
        ),
        uses(
            "actions/upload-artifact@v4",
            "Upload release artifact for macOS",
            with_={"name": "binary-macos", "path": f"target/release/{binary}"},
            if_=matrix_eq("os", "macos-latest"),
        ),
        display_name="Rust on ${{ matrix.os }}",
        runs_on="${{ matrix.os }}",
        matrix=matrix("os", oses),
        fail_fast=False,
    )


def clippy_job(oses=OSES):
    return job(
        "clippy",
        uses("actions/checkout@v4"),
        sh("Update toolchain & add clippy", "rustup update --no-self-update && rustup component add clippy"),
        uses("Swatinem/rust-cache@v2", "Cache Rust dependencies"),
        sh("Fetch dependencies", "cargo fetch --locked"),
        sh("Run clippy", "cargo clippy"),
        display_name="Clippy on ${{ matrix.os }}",
        runs_on="${{ matrix.os }}",
        matrix=matrix("os", oses),
        fail_fast=False,
    )


def release_job(expect: int = len(OSES)):
    return job(
        "release",
        uses("actions/checkout@v4"),
        uses(
            "actions/download-artifact@v4",
            "Download artifacts",
            with_={"path": "release-artifacts", "expect": expect},
        ),
        uses(
            "ncipollo/release-action@v1",
            "Create Release",
            with_={"tag": "${{ github.ref }}", "files": "release-artifacts/**/*"},
        ),
        display_name="Create GitHub Release",
        needs="build",
        if_=tag_ref(),
        release=True,
    )


def rust_workflow(name: str = "CI", binary: str = "copycat", oses=OSES) -> Workflow:
    return wf(
        name,
        build_job(binary, oses),
        clippy_job(oses),
        release_job(expect=len(oses)),
        on=on(push=push(), pull_request=pull_request(PR_PATHS)),
        env={
            "CARGO_TERM_COLOR": "always",
            "CARGO_REGISTRIES_CRATES_IO_PROTOCOL": "sparse",
        },
    )
