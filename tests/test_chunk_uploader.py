"""Tests for ChunkUploader against an in-memory upload server."""

import httpx
import pytest

from common.constants import CODE_CHUNK_MISSING, CODE_CHUNK_SET_MISSING
from uploader.chunk_uploader import ChunkUploader
from uploader.exceptions import (
    ChunkUploadFailedError,
    MalformedResponseError,
    MergeRequestError,
    MissingChunkDataError,
    ServerResponseError,
    ServerUnavailableError,
    TransformError,
)
from uploader.resume_tracker import ResumeTracker
from uploader.server_client import MergeReply
from uploader.transform import TransformTaskCorrelator, TransformWorker
from uploader.types import TransformResult, UploadSource

MIB = 1024 * 1024


class FakeServerClient:
    """
    Records chunk sends and merges the way the upload server does.

    chunk_failures maps an index to a list of exceptions raised on successive
    attempts; merge_failures is a list of exceptions raised by successive merges.
    """

    def __init__(self):
        self.chunks = {}
        self.sent = []
        self.merges = []
        self.markers = {}
        self.artifacts = {}
        self.chunk_failures = {}
        self.merge_failures = []

    async def upload_chunk(self, filename, transfer_id, index, total_chunks, data):
        self.sent.append(index)
        failures = self.chunk_failures.get(index)
        if failures:
            raise failures.pop(0)
        self.chunks[(transfer_id, index)] = data

    async def merge_chunks(self, filename, transfer_id, total_chunks):
        self.merges.append((filename, transfer_id, total_chunks))
        if self.merge_failures:
            raise self.merge_failures.pop(0)
        if transfer_id in self.markers:
            return MergeReply(filename=self.markers[transfer_id], reused=True, message='duplicate')
        if not any(key[0] == transfer_id for key in self.chunks):
            raise MissingChunkDataError('Chunk data not found', code=CODE_CHUNK_SET_MISSING)
        for index in range(total_chunks):
            if (transfer_id, index) not in self.chunks:
                raise MissingChunkDataError(f'Chunk {index} is missing', code=CODE_CHUNK_MISSING, missing_index=index)
        name = f"merged-{len(self.artifacts)}-{filename}"
        self.artifacts[name] = b''.join(self.chunks.pop((transfer_id, i)) for i in range(total_chunks))
        self.markers[transfer_id] = name
        return MergeReply(filename=name, reused=False, message='ok')


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def server():
    return FakeServerClient()


@pytest.fixture
def tracker(tmp_path):
    return ResumeTracker(tmp_path / 'resume.json')


@pytest.fixture
def sleeper():
    return RecordingSleep()


def _uploader(server, tracker, sleeper, chunk_size=MIB, **kwargs):
    return ChunkUploader(
        client=server,
        tracker=tracker,
        chunk_size=chunk_size,
        max_attempts=3,
        retry_delay_seconds=1.0,
        sleep=sleeper,
        **kwargs,
    )


def _connect_error():
    return httpx.ConnectError('connection refused')


@pytest.mark.asyncio
async def test_a_png_scenario(server, tracker, sleeper):
    """2.5 MB in 1 MiB chunks; chunk 2 fails twice, then everything merges once."""
    content = bytes(range(256)) * (2_500_000 // 256) + b'\x07' * (2_500_000 % 256)
    source = UploadSource.from_bytes('a.png', content, 1700000000000)
    server.chunk_failures[2] = [_connect_error(), ServerResponseError('busy', status_code=503)]
    progress = []

    result = await _uploader(server, tracker, sleeper).upload_file(source, progress.append)

    assert server.sent == [0, 1, 2, 2, 2]
    assert sleeper.calls == [1.0, 1.0]
    assert len(server.merges) == 1
    assert progress == pytest.approx([1 / 3, 2 / 3, 1.0])
    assert server.artifacts[result.artifact_name] == content
    assert result.chunks_sent == 3
    assert result.reused is False
    assert tracker.records() == {}


@pytest.mark.asyncio
async def test_repeat_upload_reuses_artifact(server, tracker, sleeper):
    source = UploadSource.from_bytes('a.png', b'x' * 10, 1)
    uploader = _uploader(server, tracker, sleeper, chunk_size=4)

    first = await uploader.upload_file(source)
    second = await uploader.upload_file(source)

    assert second.artifact_name == first.artifact_name
    assert second.reused is True
    assert len(server.artifacts) == 1


@pytest.mark.asyncio
async def test_resume_sends_only_missing_chunks(server, tracker, sleeper):
    """Acknowledged {0, 2, 4} of 5 means only {1, 3} go over the wire."""
    content = b''.join(bytes([i]) * 10 for i in range(5))
    source = UploadSource.from_bytes('big.bin', content, 1)
    for index in (0, 2, 4):
        tracker.mark_acknowledged(source.transfer_id, index)
        server.chunks[(source.transfer_id, index)] = content[index * 10:(index + 1) * 10]
    progress = []

    result = await _uploader(server, tracker, sleeper, chunk_size=10).upload_file(source, progress.append)

    assert server.sent == [1, 3]
    assert progress == pytest.approx([0.2, 0.4, 0.6, 0.8, 1.0])
    assert result.chunks_sent == 2
    assert result.chunks_skipped == 3
    assert server.artifacts[result.artifact_name] == content
    assert tracker.records() == {}


@pytest.mark.asyncio
async def test_full_record_still_merges(server, tracker, sleeper):
    source = UploadSource.from_bytes('done.bin', b'abcdef', 1)
    for index in range(2):
        tracker.mark_acknowledged(source.transfer_id, index)
        server.chunks[(source.transfer_id, index)] = b'abcdef'[index * 3:(index + 1) * 3]

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert server.sent == []
    assert len(server.merges) == 1
    assert server.artifacts[result.artifact_name] == b'abcdef'


@pytest.mark.asyncio
async def test_purged_server_data_restarts_once(server, tracker, sleeper):
    """Resume record says {0, 1} but the server lost them: clear and send everything."""
    source = UploadSource.from_bytes('lost.bin', b'aaabbbccc', 1)
    tracker.mark_acknowledged(source.transfer_id, 0)
    tracker.mark_acknowledged(source.transfer_id, 1)

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert server.sent == [2, 0, 1, 2]
    assert len(server.merges) == 2
    assert result.restarted is True
    assert result.tolerated is False
    assert server.artifacts[result.artifact_name] == b'aaabbbccc'
    assert tracker.records() == {}


@pytest.mark.asyncio
async def test_missing_data_after_full_send_is_tolerated(server, tracker, sleeper):
    source = UploadSource.from_bytes('odd.bin', b'abc', 1)
    server.merge_failures = [MissingChunkDataError('Chunk data not found', code=CODE_CHUNK_SET_MISSING)]

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert result.tolerated is True
    assert result.artifact_name is None
    assert len(server.merges) == 1
    assert tracker.records() == {}


@pytest.mark.asyncio
async def test_restart_happens_only_once(server, tracker, sleeper):
    source = UploadSource.from_bytes('odd.bin', b'abcdef', 1)
    tracker.mark_acknowledged(source.transfer_id, 0)
    server.merge_failures = [
        MissingChunkDataError('Chunk 0 is missing', code=CODE_CHUNK_MISSING, missing_index=0),
        MissingChunkDataError('Chunk data not found', code=CODE_CHUNK_SET_MISSING),
    ]

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert len(server.merges) == 2
    assert result.restarted is True
    assert result.tolerated is True


@pytest.mark.asyncio
async def test_retry_exhaustion_keeps_acknowledged_chunks(server, tracker, sleeper):
    source = UploadSource.from_bytes('flaky.bin', b'aaabbbccc', 1)
    server.chunk_failures[1] = [ServerResponseError('down', status_code=503) for _ in range(3)]

    with pytest.raises(ChunkUploadFailedError) as exc_info:
        await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert exc_info.value.index == 1
    assert exc_info.value.attempts == 3
    assert server.sent == [0, 1, 1, 1]
    assert sleeper.calls == [1.0, 1.0]
    assert server.merges == []
    assert tracker.acknowledged(source.transfer_id) == {0}


@pytest.mark.asyncio
async def test_client_error_is_not_retried(server, tracker, sleeper):
    source = UploadSource.from_bytes('bad.bin', b'abc', 1)
    server.chunk_failures[0] = [ServerResponseError('bad fileId', status_code=400, code='INVALID_FILE_ID')]

    with pytest.raises(ChunkUploadFailedError):
        await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert server.sent == [0]
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_merge_transport_errors_are_retried(server, tracker, sleeper):
    source = UploadSource.from_bytes('m.bin', b'abc', 1)
    server.merge_failures = [_connect_error(), httpx.ReadTimeout('slow')]

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert len(server.merges) == 3
    assert result.artifact_name is not None


@pytest.mark.asyncio
async def test_garbled_success_replies_are_retried(server, tracker, sleeper):
    source = UploadSource.from_bytes('g.bin', b'aaabbb', 1)
    server.chunk_failures[1] = [MalformedResponseError('Chunk 1: malformed response from server', status_code=200)]
    server.merge_failures = [MalformedResponseError('Merge: malformed response from server', status_code=200)]

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert server.sent == [0, 1, 1]
    assert len(server.merges) == 2
    assert sleeper.calls == [1.0, 1.0]
    assert server.artifacts[result.artifact_name] == b'aaabbb'


@pytest.mark.asyncio
async def test_merge_unreachable(server, tracker, sleeper):
    source = UploadSource.from_bytes('m.bin', b'abc', 1)
    server.merge_failures = [_connect_error() for _ in range(3)]

    with pytest.raises(ServerUnavailableError):
        await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert tracker.acknowledged(source.transfer_id) == {0}


@pytest.mark.asyncio
async def test_merge_server_error_is_fatal(server, tracker, sleeper):
    source = UploadSource.from_bytes('m.bin', b'abc', 1)
    server.merge_failures = [MergeRequestError('disk full', status_code=500, code='MERGE_FAILED')]

    with pytest.raises(MergeRequestError):
        await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source)

    assert len(server.merges) == 1
    assert tracker.acknowledged(source.transfer_id) == {0}


@pytest.mark.asyncio
async def test_zero_byte_file_sends_one_empty_chunk(server, tracker, sleeper):
    source = UploadSource.from_bytes('empty.txt', b'', 1)
    progress = []

    result = await _uploader(server, tracker, sleeper).upload_file(source, progress.append)

    assert server.sent == [0]
    assert progress == [1.0]
    assert server.artifacts[result.artifact_name] == b''


@pytest.mark.asyncio
async def test_progress_callback_errors_do_not_abort(server, tracker, sleeper):
    source = UploadSource.from_bytes('p.bin', b'abcdef', 1)

    def broken(fraction):
        raise RuntimeError('ui gone')

    result = await _uploader(server, tracker, sleeper, chunk_size=3).upload_file(source, broken)
    assert result.artifact_name is not None


@pytest.mark.asyncio
async def test_compressed_image_keeps_original_transfer_id(server, tracker, sleeper):
    def shrink(payload):
        return TransformResult('pic.webp', payload.content[:4], 'image/webp')

    worker = TransformWorker(shrink)
    worker.start()
    correlator = TransformTaskCorrelator(worker)
    source = UploadSource.from_bytes('pic.png', b'0123456789', 1)
    try:
        result = await _uploader(server, tracker, sleeper, chunk_size=3, correlator=correlator).upload_file(source)
    finally:
        worker.terminate()

    assert result.transfer_id == source.transfer_id
    assert result.filename == 'pic.webp'
    assert server.merges == [('pic.webp', source.transfer_id, 2)]
    assert server.artifacts[result.artifact_name] == b'0123'


@pytest.mark.asyncio
async def test_non_images_skip_transform(server, tracker, sleeper):
    calls = []

    def record(payload):
        calls.append(payload.filename)
        return TransformResult(payload.filename, payload.content, 'x')

    worker = TransformWorker(record)
    worker.start()
    correlator = TransformTaskCorrelator(worker)
    try:
        await _uploader(server, tracker, sleeper, correlator=correlator).upload_file(
            UploadSource.from_bytes('notes.txt', b'hello', 1)
        )
    finally:
        worker.terminate()

    assert calls == []


@pytest.mark.asyncio
async def test_transform_failure_fails_the_file(server, tracker, sleeper):
    def broken(payload):
        raise OSError('truncated image')

    worker = TransformWorker(broken)
    worker.start()
    correlator = TransformTaskCorrelator(worker)
    try:
        with pytest.raises(TransformError):
            await _uploader(server, tracker, sleeper, correlator=correlator).upload_file(
                UploadSource.from_bytes('pic.png', b'xx', 1)
            )
    finally:
        worker.terminate()

    assert server.sent == []


@pytest.mark.asyncio
async def test_reads_chunks_from_disk(server, tracker, sleeper, tmp_path):
    path = tmp_path / 'disk.bin'
    path.write_bytes(b'0123456789')
    source = UploadSource.from_path(path)

    result = await _uploader(server, tracker, sleeper, chunk_size=4).upload_file(source)

    assert server.sent == [0, 1, 2]
    assert server.artifacts[result.artifact_name] == b'0123456789'
