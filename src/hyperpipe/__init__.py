from .manifest import (
    kMANIFEST, manifest_path, make_manifest,
    load_manifest, update_manifest, write_json_atomic,
)
from .engine import (
    make_pipe, push, pull, pending_count,
    scan_records, creation_time_ns, generate_data_id, write_bytes_atomic,
)
from .diagnostics import log_event
