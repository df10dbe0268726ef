#!/usr/bin/env python3
# Merges a kubeconfig file into the default kubeconfig (~/.kube/config).
# Example usage:
# python3 ./kubemerge/merge.py /path/to/other/kubeconfig
# DRY_RUN=1 python3 ./kubemerge/merge.py /path/to/other/kubeconfig

import copy
import os
import sys
from collections import namedtuple
from pathlib import Path

import typer

SCRIPT_PATH = Path(__file__)
BASE_DIR = SCRIPT_PATH.parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))

from common.utils import deep_equal, error, get_diff, is_empty_diff, print_diff, warn
from kubemerge.cert_utils import check_certificate_expiry
from kubemerge.kubeconfig_utils import (
    KubeconfigError,
    RenameSkipped,
    UsageError,
    backup_kubeconfig,
    delete_context,
    flatten_kubeconfig,
    get_context_field,
    get_named,
    list_context_names,
    load_kubeconfig,
    prune_unreferenced,
    rename_context,
    resolve_kubeconfig_path,
    set_context_user,
    union_kubeconfigs,
    write_kubeconfig,
)

MergePlan = namedtuple('MergePlan', [
    'config',
    'renamed_contexts',
    'renamed_users',
    'skipped_contexts',
    'dropped_contexts',
    'shadowed_clusters',
])

MergeResult = namedtuple('MergeResult', [
    'backup_path',
    'written',
    'plan',
])


def rename_context_to_cluster(doc: dict, context_name: str):
    """
    Rename a context after its cluster and its user to "<cluster>-<user>".
    Returns the new (context, user) names.
    """
    cluster = get_context_field(doc, context_name, "cluster")
    user = get_context_field(doc, context_name, "user")

    if not cluster or not user:
        raise RenameSkipped(f"Context '{context_name}' has no cluster or user set, leaving it unrenamed")
    if get_named(doc, "users", user) is None:
        raise RenameSkipped(f"Context '{context_name}' references missing user '{user}', leaving it unrenamed")
    if cluster != context_name and get_named(doc, "contexts", cluster) is not None:
        raise RenameSkipped(f"Cannot rename context '{context_name}' to '{cluster}': a context with that name already exists")

    new_user = f"{cluster}-{user}"
    existing = get_named(doc, "users", new_user)
    if existing is not None and not deep_equal(existing["user"], get_named(doc, "users", user)["user"]):
        raise RenameSkipped(f"Cannot rename user '{user}' of context '{context_name}' to '{new_user}': a different user with that name already exists")

    rename_context(doc, context_name, cluster)
    set_context_user(doc, cluster, new_user)

    return cluster, new_user

def rename_contexts(doc: dict, verbose: bool = True):
    renamed_contexts = {}
    renamed_users = {}
    skipped = []

    for context_name in list_context_names(doc):
        original_user = get_context_field(doc, context_name, "user")
        try:
            new_name, new_user = rename_context_to_cluster(doc, context_name)
        except RenameSkipped as e:
            warn(str(e))
            skipped.append(context_name)
            continue

        if verbose:
            print(f"Renamed context '{context_name}' to '{new_name}' (user '{original_user}' -> '{new_user}')")
        renamed_contexts[context_name] = new_name
        renamed_users[new_user] = original_user

    return renamed_contexts, renamed_users, skipped

def drop_duplicate_contexts(doc: dict, existing_contexts, verbose: bool = True):
    dropped = []

    for context_name in list_context_names(doc):
        if context_name not in existing_contexts:
            continue

        if verbose:
            print(f"Context '{context_name}' already exists in default config. Removing from merge file...")
        cluster = get_context_field(doc, context_name, "cluster")
        user = get_context_field(doc, context_name, "user")
        delete_context(doc, context_name)
        prune_unreferenced(doc, clusters={cluster}, users={user})
        dropped.append(context_name)

    return dropped

def warn_shadowed_clusters(default_flat: dict, working_flat: dict):
    """
    Warn about incoming clusters whose name is taken by a different cluster in the default
    document. The default one wins, so contexts using that name end up on its server.
    """
    shadowed = []

    for item in working_flat.get("clusters", []):
        existing = get_named(default_flat, "clusters", item["name"])
        if existing is None or deep_equal(existing["cluster"], item["cluster"]):
            continue

        warn(f"Cluster '{item['name']}' already exists in default config with different settings, keeping the default one")
        shadowed.append(item["name"])

    return shadowed

def plan_merge(default_doc: dict, incoming_doc: dict, default_dir: Path, incoming_dir: Path, verbose: bool = True):
    """
    Compute the merged document without touching the filesystem.
    The incoming document is copied, never mutated.
    """
    working = copy.deepcopy(incoming_doc)

    renamed_contexts, renamed_users, skipped = rename_contexts(working, verbose=verbose)

    for user in renamed_users:
        check_certificate_expiry(working, user, base_dir=incoming_dir, verbose=verbose)

    dropped = drop_duplicate_contexts(working, set(list_context_names(default_doc)), verbose=verbose)

    default_flat = flatten_kubeconfig(default_doc, default_dir)
    working_flat = flatten_kubeconfig(working, incoming_dir)
    shadowed = warn_shadowed_clusters(default_flat, working_flat)

    merged = union_kubeconfigs(default_flat, working_flat)

    return MergePlan(
        config=merged,
        renamed_contexts=renamed_contexts,
        renamed_users=renamed_users,
        skipped_contexts=skipped,
        dropped_contexts=dropped,
        shadowed_clusters=shadowed,
    )

def print_plan_diff(default_doc: dict, merged: dict, verbose: bool = True):
    changed = False

    for collection in ("clusters", "users", "contexts"):
        old = {item["name"]: item for item in default_doc.get(collection, [])}
        new = {item["name"]: item for item in merged.get(collection, [])}
        diff = get_diff(old, new)
        if is_empty_diff(diff):
            continue

        changed = True
        if verbose:
            # Only names are of interest, the bodies hold credentials
            print_diff(diff, f"{collection.capitalize()} diff", sensitive=True)

    return changed

def merge_kubeconfig(default_path: Path, incoming_path: Path, dry_run: bool = False, verbose: bool = True):
    default_path = Path(default_path)
    incoming_path = Path(incoming_path)

    if default_path.resolve() == incoming_path.resolve():
        raise UsageError(f"Cannot merge '{incoming_path}' into itself")

    # Both documents must parse before anything is written
    default_doc = load_kubeconfig(default_path)
    incoming_doc = load_kubeconfig(incoming_path)

    backup_path = None
    if not dry_run:
        backup_path = backup_kubeconfig(default_path)
        if verbose:
            print(f"Backed up '{default_path}' to '{backup_path}'")

    plan = plan_merge(
        default_doc,
        incoming_doc,
        default_dir=default_path.resolve().parent,
        incoming_dir=incoming_path.resolve().parent,
        verbose=verbose,
    )

    changed = print_plan_diff(default_doc, plan.config, verbose=verbose)

    if dry_run:
        if verbose:
            print("Dry run, not writing changes")
        return MergeResult(backup_path=None, written=False, plan=plan)

    if not changed and deep_equal(default_doc, plan.config):
        if verbose:
            print("No changes to kubeconfig")
        return MergeResult(backup_path=backup_path, written=False, plan=plan)

    write_kubeconfig(default_path, plan.config)

    return MergeResult(backup_path=backup_path, written=True, plan=plan)


app = typer.Typer()

@app.command()
def main(
    kubeconfig_to_merge: Path = typer.Argument(..., exists=True, dir_okay=False, help="Kubeconfig file to merge into the default one"),
    kubeconfig: Path = typer.Option(None, help="Kubeconfig to merge into. Defaults to $KUBECONFIG or ~/.kube/config"),
    dry_run: bool = typer.Option(False, help="Show what would change without writing anything"),
):
    default_path = resolve_kubeconfig_path(kubeconfig)
    dry_run = dry_run or bool(os.environ.get("DRY_RUN"))

    try:
        merge_kubeconfig(default_path, kubeconfig_to_merge, dry_run=dry_run)
    except KubeconfigError as e:
        error(str(e))
        raise typer.Exit(code=1)

    if not dry_run:
        print(f"Successfully merged '{kubeconfig_to_merge}' into '{default_path}'.")

if __name__ == "__main__":
    app()
