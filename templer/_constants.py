"""Common literal values used across templer.

These constants keep hook filenames, script markers, and output locations
centralized so the content store, sandbox, generators, and tests can import
the same values without drifting. Intended for internal use within the
templer package.

Examples
--------
>>> from templer import _constants
>>> _constants.SCRIPT_GENERATE
'<script generate>'
>>> _constants.CACHE_FILENAME
'cache.json'
"""

TEMPLATE_SUFFIX = ".jinja"

PRE_GENERATE_SCRIPT = "pre_generate.py"
POST_GENERATE_SCRIPT = "post_generate.py"
PRE_GENERATE_NAME = "PRE_GENERATE"
POST_GENERATE_NAME = "POST_GENERATE"

SCRIPT_GENERATE = "<script generate>"
SCRIPT_GENERATE_USE = "<script generate-use:"
SCRIPT_ENTRY = "<script entry>"
SCRIPT_LIB = "<script lib>"
END_SCRIPT = "</script>"

BODY_SLOT = "_body"
PATH_WILDCARD = "*"

LIB_DIR = "js"
PAGE_FILENAME = "index.html"
ENTRY_SUFFIX = ".js"
DEFAULT_ENTRY_NAME = "main"

CACHE_FILENAME = "cache.json"
SHARED_CACHE_GROUP = "shared"

DEFAULT_SCRIPT_TIMEOUT = 3.0
DEFAULT_DEBOUNCE = 0.05
