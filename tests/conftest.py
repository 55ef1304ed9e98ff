import os
import tempfile

# The app module builds its store at import time; keep it away from ~/.devcontext.
os.environ["DEVCONTEXT_DATA_DIR"] = tempfile.mkdtemp(prefix="devcontext-tests-")
os.environ["DEVCONTEXT_STORAGE"] = "fs"
os.environ.pop("DEVCONTEXT_PG_DSN", None)
os.environ.pop("DEVCONTEXT_STRICT_TOOL_ACTIONS", None)
