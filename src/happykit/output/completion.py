"""Bash completion script generated from the flag-set tree."""

from __future__ import annotations

import re

from happykit.flags import ROOT, FlagSet

_FUNC_SAFE = re.compile(r"[^A-Za-z0-9_]")


def _words(flagset: FlagSet) -> list[str]:
    words = sorted(flagset.sets)
    for flag in flagset.flags:
        words.append(f"--{flag.name}")
        if flag.short:
            words.append(f"-{flag.short}")
    return words


def _walk(flagset: FlagSet, path: str, levels: dict[str, list[str]]) -> None:
    levels[path] = _words(flagset)
    for name in sorted(flagset.sets):
        _walk(flagset.sets[name], f"{path} {name}", levels)


def bash_completion(prog_name: str, root: FlagSet) -> str:
    """Return a bash completion script for *prog_name*.

    The script tracks the command path typed so far and completes the
    subcommands and flags of the deepest matched level.
    """
    levels: dict[str, list[str]] = {}
    _walk(root, ROOT, levels)
    func = "_" + _FUNC_SAFE.sub("_", prog_name) + "_completions"

    transitions = []
    for path in levels:
        if path == ROOT:
            continue
        parent, _, name = path.rpartition(" ")
        transitions.append(f'            "{parent} {name}") path="{path}" ;;')

    cases = []
    for path, words in levels.items():
        joined = " ".join(words + ["--help"])
        cases.append(f'        "{path}") words="{joined}" ;;')

    lines = [
        f"# bash completion for {prog_name}",
        f"{func}() {{",
        '    local cur word path words',
        '    cur="${COMP_WORDS[COMP_CWORD]}"',
        f'    path="{ROOT}"',
        '    for word in "${COMP_WORDS[@]:1:COMP_CWORD-1}"; do',
        '        case "$path $word" in',
        *transitions,
        "        esac",
        "    done",
        '    case "$path" in',
        *cases,
        '        *) words="" ;;',
        "    esac",
        '    COMPREPLY=( $(compgen -W "$words" -- "$cur") )',
        "}",
        f"complete -F {func} {prog_name}",
    ]
    return "\n".join(lines) + "\n"
