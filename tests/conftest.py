from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import pytest

SAMPLE_README = """\
# Acme Widgets

A small service that turns widgets into gadgets.

## Installation

```javascript
npm install
```

```python
pip install -r requirements.txt
```

## Testing

Run the suite with pytest:

```bash
pytest
```

## License

Released under the MIT License.
"""


@pytest.fixture
def sample_readme() -> str:
    """README text exercising every built-in analyzer."""
    return SAMPLE_README


@pytest.fixture
def write_readme(tmp_path: Path) -> Callable[..., Path]:
    """Write README text under the pytest tmp_path and return its path."""

    def _write(text: str = SAMPLE_README, name: str = "README.md") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def _reset_readmeinfo_logger():
    yield
    logger = logging.getLogger("readmeinfo")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
