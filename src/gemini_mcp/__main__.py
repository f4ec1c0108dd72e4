import sys

from gemini_mcp.cli import main

sys.exit(main())
