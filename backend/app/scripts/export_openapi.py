from __future__ import annotations

import json
import sys
from pathlib import Path

from backend.app.main import create_app


def main(output_dir: Path | None = None) -> Path:
    openapi_dir = output_dir or Path("openapi")
    openapi_dir.mkdir(parents=True, exist_ok=True)
    schema_path = openapi_dir / "youtube-companion.openapi.json"
    schema = create_app().openapi()
    schema_path.write_text(json.dumps(schema, indent=2, sort_keys=True), encoding="utf-8")
    print(f"Wrote OpenAPI schema ({len(schema.get('paths', {}))} paths) to {schema_path}")
    return schema_path


if __name__ == "__main__":
    main(Path(sys.argv[1]) if len(sys.argv) > 1 else None)
