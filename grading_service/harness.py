"""
Harness programs that wrap a submission inside the sandboxed process.

Each harness is invoked as::

    <interpreter> harness <solution> <args.json> <result file> <function name>

It loads the submission, calls the entry point with the decoded positional
arguments and writes the canonical form of the return value to the result
file. Anything the submission prints goes to stdout/stderr and never reaches
the result file. Uncaught errors are reported on stderr with exit code 1.

Canonical form: "" for null/None, "true"/"false" for booleans, compact JSON
for lists/tuples/dicts/objects, the plain string form for everything else.

Python submissions run behind an audit hook. JavaScript submissions run in
their own V8 context that holds only the language built-ins and a console, so
node's process, require, Buffer and timers are not reachable.
"""

PYTHON_HARNESS = r'''
import json
import os
import runpy
import sys
import traceback

_BLOCKED_EVENTS = (
    "socket.", "subprocess.", "os.system", "os.exec", "os.posix_spawn",
    "os.spawn", "os.fork", "os.forkpty", "os.kill", "os.remove", "os.rename",
    "os.rmdir", "os.mkdir", "os.chmod", "os.chown", "os.link", "os.symlink",
    "os.truncate", "os.putenv", "os.unsetenv", "shutil.", "ctypes.", "pty.",
    "urllib.", "http.client.", "ftplib.", "smtplib.", "webbrowser.",
)
# Extension modules that reach the OS without raising audit events of their own.
_BLOCKED_MODULES = frozenset((
    "_posixsubprocess", "_ctypes", "_socket", "_ssl", "_multiprocessing",
    "_posixshmem", "_winapi", "_overlapped",
))
_LISTING_EVENTS = ("os.listdir", "os.scandir")
_WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT | os.O_TRUNC


def _readable_roots(workdir):
    roots = {workdir, sys.prefix, sys.base_prefix, sys.exec_prefix, sys.base_exec_prefix}
    roots.update(p for p in sys.path if p)
    return tuple(os.path.join(os.path.realpath(r), "") for r in roots)


def _make_guard(workdir, publish):
    roots = _readable_roots(workdir)

    def check_readable(path):
        full = os.path.realpath(os.fsdecode(path))
        if not os.path.join(full, "").startswith(roots):
            raise PermissionError("reading %s is not permitted in the grading sandbox" % full)

    def guard(event, args):
        if event == "import":
            if args[0] in _BLOCKED_MODULES:
                raise PermissionError("importing %s is not permitted in the grading sandbox" % args[0])
            return
        if event == "os.rename" and tuple(os.fsdecode(p) for p in args[:2]) == publish:
            return
        if event.startswith(_BLOCKED_EVENTS):
            raise PermissionError("%s is not permitted in the grading sandbox" % event)
        if event in _LISTING_EVENTS:
            path = args[0]
            if not isinstance(path, int):
                check_readable("." if path is None else path)
            return
        if event == "open":
            path, mode, flags = args
            if isinstance(path, int):
                return
            if (mode and any(c in mode for c in "wax+")) or (flags or 0) & _WRITE_FLAGS:
                raise PermissionError("writing files is not permitted in the grading sandbox")
            check_readable(path)

    return guard


def _default(value):
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def canonical(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_default)
    return str(value)


def main():
    solution_path, args_path, result_path, function_name = sys.argv[1:5]
    with open(args_path, encoding="utf-8") as f:
        args = json.load(f)

    # Renamed to result_path only after serialization, so an early exit leaves no result.
    partial_path = result_path + ".partial"
    result_file = open(partial_path, "w", encoding="utf-8")

    for name in _BLOCKED_MODULES:
        sys.modules.pop(name, None)
    workdir = os.path.dirname(os.path.realpath(solution_path))
    sys.addaudithook(_make_guard(workdir, publish=(partial_path, result_path)))

    try:
        namespace = runpy.run_path(solution_path, run_name="__submission__")
    except SyntaxError as e:
        sys.stderr.write("".join(traceback.format_exception_only(type(e), e)))
        return 1
    except BaseException as e:
        traceback.print_exception(type(e), e, e.__traceback__.tb_next)
        return 1

    func = namespace.get(function_name)
    if not callable(func):
        sys.stderr.write("NameError: function '%s' is not defined\n" % function_name)
        return 1

    try:
        result = func(*args)
        serialized = canonical(result)
    except BaseException as e:
        traceback.print_exception(type(e), e, e.__traceback__.tb_next)
        return 1

    result_file.write(serialized)
    result_file.close()
    os.replace(partial_path, result_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
'''

JAVASCRIPT_HARNESS = r'''
'use strict';
const fs = require('fs');
const vm = require('vm');

// Runs inside the submission's context. It must only touch its own
// parameters and the context's built-ins; the host callbacks it receives are
// kept in this closure and are only ever called with strings.
function contextRunner(load, argsJson, functionName, write, finish, fail) {
    'use strict';
    const ContextPromise = Promise;
    const parse = JSON.parse;
    const stringify = JSON.stringify;
    const toText = String;

    const show = (value) => {
        if (typeof value === 'string') {
            return value;
        }
        try {
            const text = stringify(value);
            if (text !== undefined) {
                return text;
            }
        } catch (err) {
            // fall through to String()
        }
        return toText(value);
    };

    const printer = (stream) => function (...values) {
        let line = '';
        try {
            for (let i = 0; i < values.length; i++) {
                line += (i ? ' ' : '') + show(values[i]);
            }
        } catch (err) {
            return;
        }
        write(stream, `${line}\n`);
    };

    const describe = (err) => {
        try {
            if (err && typeof err.stack === 'string') {
                return err.stack;
            }
            return `Error: ${toText(err)}`;
        } catch (inner) {
            return 'Error: uncaught exception';
        }
    };

    const canonical = (value) => {
        if (value === null || value === undefined) {
            return '';
        }
        if (typeof value === 'boolean') {
            return value ? 'true' : 'false';
        }
        if (typeof value === 'object') {
            return stringify(value);
        }
        return toText(value);
    };

    const blockedRequire = (name) => {
        throw new Error(`require('${toText(name)}') is not permitted in the grading sandbox`);
    };

    globalThis.console = {
        log: printer('stdout'),
        info: printer('stdout'),
        debug: printer('stdout'),
        warn: printer('stderr'),
        error: printer('stderr'),
    };

    const module = { exports: {} };
    let entry;
    try {
        entry = load(module, module.exports, blockedRequire);
        if (typeof entry !== 'function' && module.exports) {
            entry = typeof module.exports === 'function' ? module.exports : module.exports[functionName];
        }
    } catch (err) {
        fail(describe(err));
        return;
    }
    if (typeof entry !== 'function') {
        fail(`ReferenceError: function '${functionName}' is not defined`);
        return;
    }

    let pending;
    try {
        pending = ContextPromise.resolve(entry(...parse(argsJson)));
    } catch (err) {
        fail(describe(err));
        return;
    }
    pending.then(
        (value) => {
            let text;
            try {
                text = canonical(value);
            } catch (err) {
                fail(describe(err));
                return;
            }
            finish(toText(text));
        },
        (err) => fail(describe(err)),
    );
}

function newContext() {
    // A null-prototype sandbox keeps this realm's Object (and its Function
    // constructor) out of reach of `this.constructor` lookups.
    return vm.createContext(Object.create(null), { codeGeneration: { strings: true, wasm: false } });
}

function main() {
    const [solutionPath, argsPath, resultPath, functionName] = process.argv.slice(2);
    const argsJson = fs.readFileSync(argsPath, 'utf8');
    const source = fs.readFileSync(solutionPath, 'utf8');

    let settled = false;
    const settle = () => {
        if (settled) {
            return false;
        }
        settled = true;
        return true;
    };

    const write = (stream, text) => {
        if (typeof text !== 'string') {
            return;
        }
        try {
            (stream === 'stderr' ? process.stderr : process.stdout).write(text);
        } catch (err) {
            // output is capped by the file size limit
        }
    };
    const fail = (text) => {
        if (!settle()) {
            return;
        }
        process.stderr.write(`${typeof text === 'string' ? text : 'Error: uncaught exception'}\n`);
        process.exitCode = 1;
    };
    const finish = (text) => {
        if (typeof text !== 'string' || !settle()) {
            return;
        }
        try {
            fs.writeFileSync(resultPath, text, 'utf8');
        } catch (err) {
            process.stderr.write(`${err.stack}\n`);
            process.exitCode = 1;
        }
    };

    const context = newContext();
    let load;
    try {
        load = vm.compileFunction(
            `${source}\n;return typeof ${functionName} !== 'undefined' ? ${functionName} : undefined;`,
            ['module', 'exports', 'require'],
            { filename: 'solution.js', parsingContext: context },
        );
    } catch (err) {
        fail(String(err && err.stack ? err.stack : err));
        return;
    }

    const run = vm.runInContext(`(${contextRunner.toString()})`, context);
    run(load, argsJson, functionName, write, finish, fail);
}

main();
'''
