import sys
from collections import namedtuple


def deep_equal(obj1, obj2):
    """
    Deep compare two objects. Return True if they are equal, False otherwise.
    """
    if type(obj1) != type(obj2):
        return False
    if type(obj1) == dict:
        if len(obj1) != len(obj2):
            return False
        for key in obj1:
            if key not in obj2:
                return False
            if not deep_equal(obj1[key], obj2[key]):
                return False
        return True
    if type(obj1) == list:
        if len(obj1) != len(obj2):
            return False
        for i in range(len(obj1)):
            if not deep_equal(obj1[i], obj2[i]):
                return False
        return True
    return obj1 == obj2


Diff = namedtuple('Diff', ['added', 'removed', 'modified'])

def get_diff(old: dict, new: dict):
    added = {}
    removed = {}
    modified = {}

    for key, value in new.items():
        if key not in old:
            added[key] = value
        elif not deep_equal(old[key], value):
            modified[key] = (old[key], value)

    for key in old.keys():
        if key not in new:
            removed[key] = old[key]

    return Diff(added=added, removed=removed, modified=modified)

def is_empty_diff(diff: Diff):
    return not diff.added and not diff.removed and not diff.modified

def print_diff(diff: Diff, title: str, sensitive: bool = False):
    """
    Print the keys of a diff. Values are only shown when the diff is not sensitive.
    """
    print(f"{title}:")

    for label, entries in (("Added", diff.added), ("Removed", diff.removed), ("Modified", diff.modified)):
        if not entries:
            print(f"  {label}: None")
            continue

        print(f"  {label}:")
        for key, value in entries.items():
            if sensitive:
                print(f"    {key}: <sensitive>")
            elif label == "Modified":
                old_value, new_value = value
                print(f"    {key}: {old_value} -> {new_value}")
            else:
                print(f"    {key}: {value}")

def warn(message: str):
    print(f"Warning: {message}", file=sys.stderr)

def error(message: str):
    print(f"Error: {message}", file=sys.stderr)
