from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
import re
import shutil
import subprocess
import sys
from threading import Lock
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from PIL import Image, ImageSequence, UnidentifiedImageError

from .errors import CompressionError
from .log import get_logger
from .settings import GifOptions, JpegOptions, PngOptions, SvgOptions, merge_options


logger = get_logger(__name__)

WINDOWS_CREATIONFLAGS = (
    getattr(subprocess, "CREATE_NO_WINDOW", 0) if sys.platform.startswith("win") else 0
)

# pngquant exits with 99 when the result would be below the minimum quality
PNGQUANT_QUALITY_TOO_LOW = 99

_TOOL_CACHE: dict[tuple[str, ...], Optional[str]] = {}
_TOOL_LOCK = Lock()


@dataclass(frozen=True)
class CompressedFile:
    source: Path
    path: Path
    size: int
    engine: str


class CompressorPlugin(ABC):
    """One format-specific compressor with its resolved options."""

    name: str = ""
    extensions: frozenset = frozenset()
    # Pillow format names recognised by signature sniffing
    formats: frozenset = frozenset()

    def accepts(self, path: Path, detected: Optional[str]) -> bool:
        if detected is not None:
            return detected in self.formats
        return path.suffix.lower() in self.extensions

    @abstractmethod
    def run(self, source: Path, output: Path) -> str:
        """Write the compressed form of `source` to `output`, return the engine used."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({getattr(self, 'options', '')})"


class JpegPlugin(CompressorPlugin):
    name = "jpg"
    extensions = frozenset({".jpg", ".jpeg"})
    formats = frozenset({"JPEG", "MPO"})

    def __init__(self, options: JpegOptions) -> None:
        self.options = options

    def run(self, source: Path, output: Path) -> str:
        engines: list[tuple[str, Callable[[], bool]]] = []
        cjpeg = get_tool_executable(["cjpeg", "mozjpeg"])
        if cjpeg:
            engines.append(("mozjpeg", lambda: run_tool(build_cjpeg_command(cjpeg, source, output, self.options), output)))
        engine = _run_engine_chain(engines)
        if engine:
            return engine

        if self.options.arithmetic:
            logger.debug("Pillow cannot write arithmetic-coded JPEG, using Huffman for {}", source)
        with Image.open(source) as im:
            im.load()
            save_kwargs: dict = {
                "quality": int(self.options.quality),
                "optimize": True,
                "progressive": bool(self.options.progressive),
            }
            icc = im.info.get("icc_profile")
            if icc is not None:
                save_kwargs["icc_profile"] = icc
            if im.mode not in ("RGB", "L", "CMYK"):
                im = im.convert("RGB")
            im.save(output, format="JPEG", **save_kwargs)
        return "Pillow"


class PngPlugin(CompressorPlugin):
    name = "png"
    extensions = frozenset({".png"})
    formats = frozenset({"PNG"})

    def __init__(self, options: PngOptions) -> None:
        self.options = options

    def run(self, source: Path, output: Path) -> str:
        engines: list[tuple[str, Callable[[], bool]]] = []
        pngquant = get_tool_executable(["pngquant"])
        if pngquant:
            engines.append(("pngquant", lambda: self._run_pngquant(pngquant, source, output)))
        engine = _run_engine_chain(engines)
        if engine:
            return engine

        colors = max(16, int(256 * self.options.quality[1]))
        with Image.open(source) as im:
            im.load()
            quantized = quantize_image(im, colors)
            quantized.save(output, format="PNG", optimize=True, compress_level=9)
        return "Pillow"

    def _run_pngquant(self, pngquant: str, source: Path, output: Path) -> bool:
        command = build_pngquant_command(pngquant, source, output, self.options)
        try:
            result = run_command(command)
        except OSError as e:
            logger.debug("pngquant could not be started ({}), falling back to Pillow", e)
            return False
        if result.returncode == PNGQUANT_QUALITY_TOO_LOW:
            logger.debug("pngquant: {} cannot meet quality {}, keeping input", source, self.options.quality)
            shutil.copyfile(source, output)
            return True
        return _tool_succeeded(result, command, output)


class GifPlugin(CompressorPlugin):
    name = "gif"
    extensions = frozenset({".gif"})
    formats = frozenset({"GIF"})

    def __init__(self, options: GifOptions) -> None:
        self.options = options

    def run(self, source: Path, output: Path) -> str:
        engines: list[tuple[str, Callable[[], bool]]] = []
        gifsicle = get_tool_executable(["gifsicle"])
        if gifsicle:
            engines.append(("gifsicle", lambda: run_tool(build_gifsicle_command(gifsicle, source, output, self.options), output)))
        engine = _run_engine_chain(engines)
        if engine:
            return engine

        with Image.open(source) as im:
            frames: list[Image.Image] = []
            durations: list[int] = []
            disposals: list[int] = []
            # Timing and disposal are per frame; read them while positioned on each one
            for frame in ImageSequence.Iterator(im):
                durations.append(frame.info.get("duration", 0))
                disposals.append(getattr(frame, "disposal_method", 0))
                frames.append(frame.copy())
            loop = im.info.get("loop")

        if self.options.colors < 256:
            frames = [quantize_image(frame, self.options.colors) for frame in frames]
        save_kwargs: dict = {
            "duration": durations,
            "disposal": disposals,
            "optimize": True,
            "interlace": bool(self.options.interlaced),
        }
        # A still GIF has no loop extension; do not add one
        if loop is not None:
            save_kwargs["loop"] = loop
        frames[0].save(output, format="GIF", save_all=True, append_images=frames[1:], **save_kwargs)
        return "Pillow"


class SvgPlugin(CompressorPlugin):
    name = "svg"
    extensions = frozenset({".svg"})
    formats = frozenset({"SVG"})

    def __init__(self, options: Optional[SvgOptions] = None) -> None:
        self.options = options or SvgOptions()

    def run(self, source: Path, output: Path) -> str:
        text = source.read_text(encoding="utf-8")
        output.write_text(minify_svg(text), encoding="utf-8")
        return "svg-minify"


# ---------------- Options ----------------

def resolve_options(overrides: Optional[Mapping[str, Any]] = None) -> List[CompressorPlugin]:
    """
    Build the full plugin list, with user overrides merged onto the defaults.

    Always returns jpg, png, gif, svg in that order.
    """
    overrides = overrides or {}
    return [
        JpegPlugin(merge_options(JpegOptions(), overrides.get("jpg"))),
        PngPlugin(merge_options(PngOptions(), overrides.get("png"))),
        GifPlugin(merge_options(GifOptions(), overrides.get("gif"))),
        SvgPlugin(),
    ]


# ---------------- Compression ----------------

def compress(
    sources: Iterable[Path],
    destination_dir: Path,
    plugins: Sequence[CompressorPlugin],
) -> List[CompressedFile]:
    """
    Compress each source into destination_dir under its own file name.

    The destination may be the source's own directory; the output then
    replaces the source. Errors propagate as CompressionError.
    """
    destination_dir = Path(destination_dir)
    destination_dir.mkdir(parents=True, exist_ok=True)

    results: List[CompressedFile] = []
    for source in sources:
        source = Path(source)
        output = destination_dir / source.name
        plugin = select_plugin(source, plugins)

        if plugin is None:
            logger.debug("No compressor matches {}, copying unchanged", source)
            if source.resolve() != output.resolve():
                shutil.copyfile(source, output)
            engine = "none"
        else:
            engine = _run_plugin(plugin, source, output)

        results.append(CompressedFile(source=source, path=output, size=output.stat().st_size, engine=engine))
    return results


def _run_plugin(plugin: CompressorPlugin, source: Path, output: Path) -> str:
    # Write next to the destination first; output may be the source itself
    temp = output.with_name(f"{output.stem}.__opt{output.suffix}")
    try:
        engine = plugin.run(source, temp)
        if not temp.exists():
            raise CompressionError(source, message=f"{plugin.name} compressor produced no output")
        temp.replace(output)
    except CompressionError:
        raise
    except Exception as e:
        raise CompressionError(source, e) from e
    finally:
        if temp.exists():
            temp.unlink()

    logger.debug("Compressed {} with {}", source, engine)
    return engine


def select_plugin(path: Path, plugins: Sequence[CompressorPlugin]) -> Optional[CompressorPlugin]:
    detected = detect_format(path)
    for plugin in plugins:
        if plugin.accepts(path, detected):
            return plugin
    return None


def detect_format(path: Path) -> Optional[str]:
    """Sniff the file signature. Returns a Pillow format name, "SVG", or None."""
    try:
        with Image.open(path) as im:
            return im.format
    except UnidentifiedImageError:
        pass
    except OSError:
        return None

    try:
        with open(path, "rb") as f:
            head = f.read(1024).lstrip().lower()
    except OSError:
        return None
    if b"<svg" in head or (head.startswith(b"<?xml") and path.suffix.lower() == ".svg"):
        return "SVG"
    return None


# ---------------- Tool commands ----------------

def build_cjpeg_command(cjpeg: str, source: Path, output: Path, options: JpegOptions) -> list[str]:
    command = [cjpeg, "-quality", str(max(1, min(100, options.quality)))]
    # mozjpeg defaults to progressive
    if not options.progressive:
        command.append("-baseline")
    if options.arithmetic:
        command.append("-arithmetic")
    command += ["-outfile", str(output), str(source)]
    return command


def build_pngquant_command(pngquant: str, source: Path, output: Path, options: PngOptions) -> list[str]:
    lo, hi = options.quality
    return [
        pngquant,
        "--quality",
        f"{round(lo * 100)}-{round(hi * 100)}",
        "--speed",
        str(options.speed),
        "--strip",
        "--output",
        str(output),
        "--force",
        str(source),
    ]


def build_gifsicle_command(gifsicle: str, source: Path, output: Path, options: GifOptions) -> list[str]:
    command = [gifsicle, f"-O{options.optimization_level}", "--no-comments", "--no-names"]
    command.append("--interlace" if options.interlaced else "--no-interlace")
    if options.colors < 256:
        command += ["--colors", str(options.colors)]
    command += [str(source), "-o", str(output)]
    return command


def _run_engine_chain(engines: list[tuple[str, Callable[[], bool]]]) -> Optional[str]:
    for name, runner in engines:
        if runner():
            return name
    return None


def run_tool(command: list[str], output: Path) -> bool:
    try:
        result = run_command(command)
    except OSError as e:
        logger.debug("{} could not be started ({}), falling back to Pillow", Path(command[0]).name, e)
        return False
    return _tool_succeeded(result, command, output)


def _tool_succeeded(result: subprocess.CompletedProcess, command: list[str], output: Path) -> bool:
    if result.returncode == 0 and output.exists():
        return True
    stderr = result.stderr.decode("utf-8", "replace").strip() if result.stderr else ""
    tool = Path(command[0]).name
    logger.debug(
        "{} failed with status {}: {}; falling back to Pillow",
        tool,
        result.returncode,
        stderr or "no output",
    )
    # A failed tool may leave a partial file behind
    output.unlink(missing_ok=True)
    return False


def run_command(command: list[str]) -> subprocess.CompletedProcess:
    logger.debug("Running {}", " ".join(command))
    return subprocess.run(command, capture_output=True, creationflags=WINDOWS_CREATIONFLAGS)


def get_tool_executable(names: list[str]) -> Optional[str]:
    key = tuple(names)
    with _TOOL_LOCK:
        if key in _TOOL_CACHE:
            return _TOOL_CACHE[key]

    found = None
    for name in names:
        found = shutil.which(name)
        if found:
            break
    if found is None:
        logger.debug("None of {} found on PATH, falling back to Pillow", names)

    with _TOOL_LOCK:
        _TOOL_CACHE[key] = found
    return found


def clear_tool_cache() -> None:
    with _TOOL_LOCK:
        _TOOL_CACHE.clear()


# ---------------- Pillow / SVG helpers ----------------

def quantize_image(image: Image.Image, colors: int) -> Image.Image:
    fast_octree = Image.Quantize.FASTOCTREE
    median_cut = Image.Quantize.MEDIANCUT
    if image.mode in {"RGBA", "LA"} or (image.mode == "P" and "transparency" in image.info):
        return image.convert("RGBA").quantize(colors=colors, method=fast_octree)
    return image.convert("RGB").quantize(colors=colors, method=median_cut)


# Comments, <metadata>, and the spans whose whitespace is content are
# matched as whole tokens; only the markup between them is collapsed.
SVG_TOKEN_RE = re.compile(
    r"(?P<comment><!--(?P<body>.*?)-->)"
    r"|(?P<metadata><metadata\b[^>]*/>|<metadata\b.*?</metadata\s*>)"
    r"|(?P<keep><!\[CDATA\[.*?\]\]>"
    r"|<(?P<tag>text|textPath|tspan|style|script)\b[^>]*(?<!/)>.*?</(?P=tag)\s*>"
    r"|<(?P<ptag>[\w:.-]+)\b[^>]*\bxml:space\s*=\s*[\"']preserve[\"'][^>]*(?<!/)>.*?</(?P=ptag)\s*>)",
    re.DOTALL | re.IGNORECASE,
)
BETWEEN_TAGS_RE = re.compile(r">\s+<")
TRAILING_SPACE_RE = re.compile(r">\s+\Z")
LEADING_SPACE_RE = re.compile(r"\A\s+<")
MULTISPACE_RE = re.compile(r"[ \t\r\n]{2,}")

LICENSE_KEEP_WORDS = ("copyright", "license")


def minify_svg(text: str) -> str:
    """
    Lossless-ish SVG cleanup: drop comments (except license notes) and
    <metadata>, collapse whitespace between and inside tags.

    Text content, <style>, <script>, CDATA and xml:space="preserve"
    subtrees are copied through as they are.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    parts: list[str] = []
    pos = 0
    for match in SVG_TOKEN_RE.finditer(text):
        parts.append(_collapse_markup(text[pos:match.start()]))
        if match.group("keep"):
            parts.append(match.group(0))
        elif match.group("comment"):
            body = match.group("body").lower()
            if any(word in body for word in LICENSE_KEEP_WORDS):
                parts.append(match.group(0))
        pos = match.end()
    parts.append(_collapse_markup(text[pos:]))
    return "".join(parts).strip()


def _collapse_markup(chunk: str) -> str:
    # Whitespace outside text elements is not rendered
    if not chunk.strip():
        return ""
    chunk = BETWEEN_TAGS_RE.sub("><", chunk)
    chunk = TRAILING_SPACE_RE.sub(">", chunk)
    chunk = LEADING_SPACE_RE.sub("<", chunk)
    return MULTISPACE_RE.sub(" ", chunk)
