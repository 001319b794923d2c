"""Static table of supported languages.

Command templates are argv tuples. Placeholders are filled in by the local
executor: ``{src}`` is the materialized source file, ``{out}`` the path for
compiled output and ``{dir}`` the artifact directory (the child's cwd).
"""
import re
from dataclasses import dataclass, field
from codeexec.core.errors import UnsupportedLanguage

CONCAT = "concat"
ENTRYPOINT = "entrypoint"


@dataclass(frozen=True)
class RuntimeProfile:
    name: str
    extension: str
    run: tuple[str, ...]
    compile: tuple[str, ...] | None = None
    judge_id: int | None = None
    filename: str | None = None
    multi_file: str = ENTRYPOINT
    entry_pattern: str | None = None
    comment: str = "//"
    aliases: tuple[str, ...] = field(default=())

    @property
    def compiled(self) -> bool:
        return self.compile is not None

    @property
    def source_name(self) -> str:
        return self.filename or f"main{self.extension}"

    def is_entrypoint(self, content: str) -> bool:
        if not self.entry_pattern:
            return False
        return re.search(self.entry_pattern, content, re.MULTILINE) is not None


_C_MAIN = r"\bint\s+main\s*\("

PROFILES = (
    RuntimeProfile(
        "javascript", ".js", ("node", "{src}"), judge_id=63, aliases=("js", "node")
    ),
    RuntimeProfile(
        "typescript", ".ts", ("ts-node", "{src}"), judge_id=74, aliases=("ts",)
    ),
    RuntimeProfile(
        "python",
        ".py",
        ("python3", "{src}"),
        judge_id=71,
        multi_file=CONCAT,
        entry_pattern=r"^if\s+__name__\s*==\s*['\"]__main__['\"]",
        comment="#",
        aliases=("py", "python3"),
    ),
    RuntimeProfile(
        "c",
        ".c",
        ("{out}",),
        compile=("gcc", "-O2", "-o", "{out}", "{src}", "-lm"),
        judge_id=50,
        multi_file=CONCAT,
        entry_pattern=_C_MAIN,
    ),
    RuntimeProfile(
        "cpp",
        ".cpp",
        ("{out}",),
        compile=("g++", "-O2", "-std=c++17", "-o", "{out}", "{src}"),
        judge_id=54,
        multi_file=CONCAT,
        entry_pattern=_C_MAIN,
        aliases=("c++", "cxx", "cc"),
    ),
    RuntimeProfile(
        "rust",
        ".rs",
        ("{out}",),
        compile=("rustc", "-O", "-o", "{out}", "{src}"),
        judge_id=73,
        entry_pattern=r"\bfn\s+main\s*\(",
        aliases=("rs",),
    ),
    RuntimeProfile(
        "go",
        ".go",
        ("{out}",),
        compile=("go", "build", "-o", "{out}", "{src}"),
        judge_id=60,
        entry_pattern=r"\bfunc\s+main\s*\(",
        aliases=("golang",),
    ),
    RuntimeProfile(
        "java",
        ".java",
        ("java", "-cp", "{dir}", "Main"),
        compile=("javac", "-d", "{dir}", "{src}"),
        judge_id=62,
        filename="Main.java",
        entry_pattern=r"\bstatic\s+void\s+main\s*\(",
    ),
    RuntimeProfile(
        "kotlin",
        ".kt",
        ("java", "-jar", "{out}.jar"),
        compile=("kotlinc", "{src}", "-include-runtime", "-d", "{out}.jar"),
        judge_id=78,
        entry_pattern=r"\bfun\s+main\s*\(",
        aliases=("kt",),
    ),
    RuntimeProfile(
        "scala",
        ".scala",
        ("scala", "-cp", "{dir}", "Main"),
        compile=("scalac", "-d", "{dir}", "{src}"),
        judge_id=81,
        filename="Main.scala",
        entry_pattern=r"\bdef\s+main\s*\(",
    ),
    RuntimeProfile(
        "csharp",
        ".cs",
        ("mono", "{out}.exe"),
        compile=("mcs", "-out:{out}.exe", "{src}"),
        judge_id=51,
        entry_pattern=r"\bstatic\s+\w*\s*void\s+Main\s*\(",
        aliases=("cs", "c#"),
    ),
    RuntimeProfile("php", ".php", ("php", "{src}"), judge_id=68),
    RuntimeProfile(
        "ruby", ".rb", ("ruby", "{src}"), judge_id=72, comment="#", aliases=("rb",)
    ),
    RuntimeProfile(
        "perl", ".pl", ("perl", "{src}"), judge_id=85, comment="#", aliases=("pl",)
    ),
    RuntimeProfile("lua", ".lua", ("lua", "{src}"), judge_id=64, comment="--"),
    RuntimeProfile(
        "shell", ".sh", ("bash", "{src}"), judge_id=46, comment="#", aliases=("bash", "sh")
    ),
    RuntimeProfile(
        "powershell",
        ".ps1",
        ("pwsh", "-NoProfile", "-File", "{src}"),
        comment="#",
        aliases=("ps1", "pwsh"),
    ),
    RuntimeProfile(
        "haskell",
        ".hs",
        ("{out}",),
        compile=("ghc", "-O", "-outputdir", "{dir}", "-o", "{out}", "{src}"),
        judge_id=61,
        entry_pattern=r"^main\s*::|^main\s*=",
        comment="--",
        aliases=("hs",),
    ),
    RuntimeProfile(
        "ocaml",
        ".ml",
        ("{out}",),
        compile=("ocamlc", "-o", "{out}", "{src}"),
        judge_id=65,
        comment="(*",
        aliases=("ml",),
    ),
    RuntimeProfile(
        "clojure", ".clj", ("clojure", "-M", "{src}"), judge_id=86, comment=";;",
        aliases=("clj",),
    ),
    RuntimeProfile(
        "swift",
        ".swift",
        ("{out}",),
        compile=("swiftc", "-o", "{out}", "{src}"),
        judge_id=83,
    ),
    RuntimeProfile("dart", ".dart", ("dart", "run", "{src}"), judge_id=90,
                   entry_pattern=r"\bvoid\s+main\s*\("),
    RuntimeProfile("r", ".r", ("Rscript", "{src}"), judge_id=80, comment="#"),
    RuntimeProfile("julia", ".jl", ("julia", "{src}"), comment="#", aliases=("jl",)),
    RuntimeProfile(
        "nim",
        ".nim",
        ("{out}",),
        compile=("nim", "c", "--hints:off", "-o:{out}", "{src}"),
        comment="#",
    ),
    RuntimeProfile(
        "zig",
        ".zig",
        ("{out}",),
        compile=("zig", "build-exe", "{src}", "-femit-bin={out}"),
        entry_pattern=r"\bpub\s+fn\s+main\s*\(",
    ),
    RuntimeProfile(
        "v", ".v", ("{out}",), compile=("v", "-o", "{out}", "{src}"),
        entry_pattern=r"\bfn\s+main\s*\(",
    ),
)

_BY_NAME: dict[str, RuntimeProfile] = {}
for _p in PROFILES:
    for _key in (_p.name, *_p.aliases):
        _BY_NAME[_key] = _p


def profile_for(language: str) -> RuntimeProfile:
    key = (language or "").strip().lower()
    try:
        return _BY_NAME[key]
    except KeyError:
        raise UnsupportedLanguage(language) from None


def supported_languages() -> list[str]:
    return sorted(p.name for p in PROFILES)
