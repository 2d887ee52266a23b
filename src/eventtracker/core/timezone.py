"""UTC timezone enforcement.

Block timestamps are unix seconds; pinning TZ keeps any datetime rendering of
them (logs, CLI output) identical across hosts.
"""

import os

os.environ["TZ"] = "UTC"
