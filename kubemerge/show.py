#!/usr/bin/env python3
# Read-only inspection of kubeconfig files.
# Example usage:
# python3 ./kubemerge/show.py contexts ~/.kube/config
# python3 ./kubemerge/show.py --output-format json certs ~/.kube/config
# python3 ./kubemerge/show.py diff /path/to/other/kubeconfig

import sys
from datetime import datetime, timezone
from pathlib import Path

import typer

SCRIPT_PATH = Path(__file__)
BASE_DIR = SCRIPT_PATH.parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))

from common.cli_utils import get_app
from common.utils import error
from kubemerge.cert_utils import check_certificate_expiry
from kubemerge.kubeconfig_utils import KubeconfigError, get_names, load_kubeconfig, resolve_kubeconfig_path
from kubemerge.merge import merge_kubeconfig

app = get_app()


def load_or_exit(path: Path):
    try:
        return load_kubeconfig(path)
    except KubeconfigError as e:
        error(str(e))
        raise typer.Exit(code=1)

@app.command()
def contexts(path: Path):
    """
    List the contexts of a kubeconfig.
    """
    doc = load_or_exit(path)
    current = doc.get("current-context")

    return [
        {
            "name": item["name"],
            "cluster": item["context"].get("cluster"),
            "user": item["context"].get("user"),
            "namespace": item["context"].get("namespace", "default"),
            "current": item["name"] == current,
        }
        for item in doc["contexts"]
    ]

@app.command()
def certs(path: Path):
    """
    Show the client certificate validity of every user in a kubeconfig.
    Only the returned document goes to stdout, warnings go to stderr.
    """
    doc = load_or_exit(path)
    now = datetime.now(timezone.utc)

    ret = {}
    for user in get_names(doc, "users"):
        dates = check_certificate_expiry(doc, user, base_dir=path.resolve().parent, now=now, verbose=False)
        if dates is None:
            continue
        ret[user] = {
            "not_before": dates.not_before,
            "not_after": dates.not_after,
            "expired": dates.not_after < now,
        }

    return ret

@app.command()
def diff(path: Path, kubeconfig: Path = None):
    """
    Show what merging a kubeconfig into the default one would do, without writing anything.
    """
    default_path = resolve_kubeconfig_path(kubeconfig)

    try:
        result = merge_kubeconfig(default_path, path, dry_run=True, verbose=False)
    except KubeconfigError as e:
        error(str(e))
        raise typer.Exit(code=1)

    plan = result.plan
    return {
        "renamed_contexts": plan.renamed_contexts,
        "renamed_users": plan.renamed_users,
        "skipped_contexts": plan.skipped_contexts,
        "dropped_contexts": plan.dropped_contexts,
        "shadowed_clusters": plan.shadowed_clusters,
        "contexts": get_names(plan.config, "contexts"),
    }

if __name__ == "__main__":
    app()
