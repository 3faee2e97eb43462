"""tierup: ordered container deployment with readiness gates.

``__version__`` is the single version source; packaging reads it through
``[tool.setuptools.dynamic]``. Release builds pin it with TIERUP_BUILD_VERSION,
otherwise it is the UTC build date (YYYYMMDD).
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

__version__ = os.getenv("TIERUP_BUILD_VERSION") or datetime.now(timezone.utc).strftime("%Y%m%d")
