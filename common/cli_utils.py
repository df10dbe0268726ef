import json
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path

import typer
import yaml


class TyperOutputFormat(str, Enum):
    yaml = "yaml"
    json = "json"
    raw = "raw"


# Encode sets, paths and datetimes during JSON serialization
# Derived from https://stackoverflow.com/a/8230505
class JSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, set):
            return sorted(obj)
        if isinstance(obj, Path):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return json.JSONEncoder.default(self, obj)


def default_print_retval(ret: dict | list | str | None, output_format: TyperOutputFormat, **kwargs):
    if ret is None:
        return

    if output_format == TyperOutputFormat.yaml:
        print(yaml.safe_dump(json.loads(json.dumps(ret, cls=JSONEncoder)), default_flow_style=False, sort_keys=False), end="")
    elif output_format == TyperOutputFormat.json:
        print(json.dumps(ret, indent=2, cls=JSONEncoder))
    elif output_format == TyperOutputFormat.raw:
        sys.stdout.write(ret if isinstance(ret, str) else str(ret))


def get_app(default_output_format: TyperOutputFormat = TyperOutputFormat.yaml, callback_fn=None, print_retval_fn=None):
    if print_retval_fn is None:
        print_retval_fn = default_print_retval

    app = typer.Typer(result_callback=print_retval_fn)

    if callback_fn is None:
        @app.callback()
        def default_callback(output_format: TyperOutputFormat = default_output_format):
            pass
    else:
        app.callback()(callback_fn)

    return app
