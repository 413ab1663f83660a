import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "varsieve", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "varsieve" in cp.stdout.lower()
    for cmd in ("filter", "collate", "annotate", "run", "doctor"):
        assert cmd in cp.stdout
