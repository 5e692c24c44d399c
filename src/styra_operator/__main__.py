"""Allow running the operator with ``python -m styra_operator``."""

from .main import run

if __name__ == "__main__":
    run()
