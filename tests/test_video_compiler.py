from pathlib import Path

import httpx
import pytest

from video_pipeline.core.exceptions import ClipDownloadException, VideoCompilationException
from video_pipeline.models.domain import CompilationSegment
from video_pipeline.services import video_compiler
from video_pipeline.services.video_compiler import VideoCompiler, build_concat_list


def clip_transport(missing=()):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path in missing:
            return httpx.Response(404)
        return httpx.Response(200, content=f"video bytes of {request.url.path}".encode())
    return httpx.MockTransport(handler)


@pytest.fixture
def ffmpeg_calls(monkeypatch):
    """Replace ffmpeg with a recorder that writes the output file."""
    calls = []

    async def fake_run_media_command(cmd, timeout, operation):
        record = {"cmd": cmd, "timeout": timeout}
        if "-f" in cmd:
            record["concat_list"] = Path(cmd[cmd.index("-i") + 1]).read_text()
        calls.append(record)
        Path(cmd[-1]).write_bytes(b"compiled")
        return b""

    monkeypatch.setattr(video_compiler, "run_media_command", fake_run_media_command)
    return calls


def segments(*names):
    return [
        CompilationSegment(video_url=f"https://clips.test/{name}.mp4", duration=5.0, transition="fade")
        for name in names
    ]


def test_compile_concatenates_in_order_and_cleans_up(run, tmp_path, ffmpeg_calls):
    async def scenario():
        compiler = VideoCompiler(
            identifier="prompt-1",
            temp_base_dir=tmp_path,
            ffmpeg_timeout=42,
            transport=clip_transport(),
        )
        async with compiler:
            output = await compiler.compile_videos(segments("one", "two", "three"))
            assert output.read_bytes() == b"compiled"
            scratch_dir = compiler.scratch_dir
            downloaded = sorted(p.name for p in scratch_dir.glob("segment_*.mp4"))
            assert downloaded == ["segment_0.mp4", "segment_1.mp4", "segment_2.mp4"]
            assert (scratch_dir / "segment_1.mp4").read_bytes() == b"video bytes of /two.mp4"
        return scratch_dir

    scratch_dir = run(scenario())

    assert not scratch_dir.exists()
    assert len(ffmpeg_calls) == 1
    cmd = ffmpeg_calls[0]["cmd"]
    assert cmd[:6] == ["ffmpeg", "-y", "-f", "concat", "-safe", "0"]
    assert cmd[-3:-1] == ["-c", "copy"]
    assert ffmpeg_calls[0]["timeout"] == 42
    listed = [line.split("/")[-1].rstrip("'") for line in ffmpeg_calls[0]["concat_list"].splitlines()]
    assert listed == ["segment_0.mp4", "segment_1.mp4", "segment_2.mp4"]


def test_single_input_is_a_stream_copy(run, tmp_path, ffmpeg_calls):
    async def scenario():
        async with VideoCompiler(temp_base_dir=tmp_path, transport=clip_transport()) as compiler:
            await compiler.compile_videos(segments("only"))

    run(scenario())

    cmd = ffmpeg_calls[0]["cmd"]
    assert "concat" not in cmd
    assert cmd[1:3] == ["-y", "-i"]
    assert cmd[-3:-1] == ["-c", "copy"]


def test_download_failure_raises_and_still_cleans_up(run, tmp_path, ffmpeg_calls):
    compiler = VideoCompiler(temp_base_dir=tmp_path, transport=clip_transport(missing={"/two.mp4"}))

    async def scenario():
        async with compiler:
            await compiler.compile_videos(segments("one", "two"))

    with pytest.raises(ClipDownloadException):
        run(scenario())

    assert ffmpeg_calls == []
    assert compiler.scratch_dir is None
    assert list((tmp_path / "compilation").iterdir()) == []


def test_ffmpeg_failure_raises_compilation_error(run, tmp_path, monkeypatch):
    async def failing_ffmpeg(cmd, timeout, operation):
        raise VideoCompilationException(operation, "exit code 1: invalid data")

    monkeypatch.setattr(video_compiler, "run_media_command", failing_ffmpeg)
    compiler = VideoCompiler(temp_base_dir=tmp_path, transport=clip_transport())

    async def scenario():
        async with compiler:
            await compiler.compile_videos(segments("one", "two"))

    with pytest.raises(VideoCompilationException, match="invalid data"):
        run(scenario())

    assert list((tmp_path / "compilation").iterdir()) == []


def test_cleanup_is_safe_without_scratch_dir(run, tmp_path):
    compiler = VideoCompiler(temp_base_dir=tmp_path)
    run(compiler.cleanup())
    run(compiler.cleanup())
    assert compiler.scratch_dir is None


def test_compile_requires_segments(run, tmp_path):
    async def scenario():
        async with VideoCompiler(temp_base_dir=tmp_path) as compiler:
            await compiler.compile_videos([])

    with pytest.raises(ValueError):
        run(scenario())


def test_concat_list_escapes_quotes():
    content = build_concat_list([Path("/tmp/a.mp4"), Path("/tmp/it's.mp4")])
    assert content == "file '/tmp/a.mp4'\nfile '/tmp/it'\\''s.mp4'\n"
