"""Integration tests: uploader components against the in-process upload server."""

import io
import re

import httpx
import pytest
from PIL import Image

from upload_server.cleanup_task import StaleChunkSetCleaner
from upload_server.chunk_store import ChunkStore
from upload_server.marker_store import CompletionMarkerStore
from uploader.transfer_manager import TransferManager

CHUNK_NUMBER = re.compile(rb'name="chunkNumber"\r\n\r\n(\d+)\r\n')


class FlakyTransport(httpx.AsyncBaseTransport):
    """
    Forwards to the ASGI app, failing chosen chunk uploads with connection errors.

    failures maps a chunk index to how many attempts should fail; -1 fails forever.
    """

    def __init__(self, app, failures=None):
        self._inner = httpx.ASGITransport(app=app)
        self.failures = dict(failures or {})
        self.chunk_attempts = {}
        self.merge_requests = 0

    async def handle_async_request(self, request):
        if request.url.path == '/upload-chunk':
            body = await request.aread()
            match = CHUNK_NUMBER.search(body)
            index = int(match.group(1))
            self.chunk_attempts[index] = self.chunk_attempts.get(index, 0) + 1
            remaining = self.failures.get(index, 0)
            if remaining:
                if remaining > 0:
                    self.failures[index] = remaining - 1
                raise httpx.ConnectError('connection reset', request=request)
        elif request.url.path == '/merge-chunks':
            self.merge_requests += 1
        return await self._inner.handle_async_request(request)


async def _no_sleep(seconds):
    return None


def _manager(config, transport):
    session = httpx.AsyncClient(transport=transport, base_url='http://test')
    return TransferManager(config, session=session, sleep=_no_sleep)


@pytest.mark.asyncio
async def test_a_png_upload_with_flaky_chunk(server_app, server_settings, temp_config, tmp_path):
    """2.5 MB in 1 MiB chunks, chunk 2 fails twice; a repeat upload reuses the artifact."""
    path = tmp_path / 'a.png'
    content = bytes(range(256)) * (2_500_000 // 256) + b'\x01' * (2_500_000 % 256)
    path.write_bytes(content)
    transport = FlakyTransport(server_app, failures={2: 2})
    progress = []

    async with _manager(temp_config, transport) as manager:
        [outcome] = await manager.upload_paths([str(path)], on_progress=lambda p, f: progress.append(f))

    assert outcome.success, outcome.error
    assert transport.chunk_attempts == {0: 1, 1: 1, 2: 3}
    assert transport.merge_requests == 1
    assert progress == pytest.approx([1 / 3, 2 / 3, 1.0])
    artifact = outcome.result.artifact_name
    assert re.fullmatch(r'a-\d+\.png', artifact)
    assert (server_settings.upload_dir / artifact).read_bytes() == content
    assert not (server_settings.temp_chunks_dir / outcome.result.transfer_id).exists()

    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        [again] = await manager.upload_paths([str(path)])

    assert again.success
    assert again.result.artifact_name == artifact
    assert again.result.reused is True
    assert [p.name for p in server_settings.upload_dir.iterdir()] == [artifact]


@pytest.mark.asyncio
async def test_interrupted_upload_resumes(server_app, server_settings, temp_config, tmp_path):
    temp_config.data['chunk_size'] = 4
    path = tmp_path / 'data.bin'
    path.write_bytes(b'0000111122223333')

    async with _manager(temp_config, FlakyTransport(server_app, failures={2: -1})) as manager:
        [first] = await manager.upload_paths([str(path)])
        assert not first.success
        assert 'Chunk 2' in first.error
        [record] = manager.resume_records().values()
        assert record == [0, 1]

    transport = FlakyTransport(server_app)
    async with _manager(temp_config, transport) as manager:
        [second] = await manager.upload_paths([str(path)])
        assert manager.resume_records() == {}

    assert second.success
    assert transport.chunk_attempts == {2: 1, 3: 1}
    assert second.result.chunks_skipped == 2
    assert (server_settings.upload_dir / second.result.artifact_name).read_bytes() == b'0000111122223333'


@pytest.mark.asyncio
async def test_resume_after_server_purged_chunks(server_app, server_settings, temp_config, tmp_path):
    """Server-side temp data vanished between attempts: the client starts over once."""
    temp_config.data['chunk_size'] = 4
    path = tmp_path / 'data.bin'
    path.write_bytes(b'aaaabbbbcccc')

    async with _manager(temp_config, FlakyTransport(server_app, failures={1: -1})) as manager:
        [first] = await manager.upload_paths([str(path)])
    assert not first.success

    cleaner = StaleChunkSetCleaner(
        chunk_store=ChunkStore(server_settings.temp_chunks_dir),
        marker_store=CompletionMarkerStore(server_settings.completed_dir),
        upload_dir=server_settings.upload_dir,
        max_age_seconds=-1,
        interval_seconds=0,
    )
    purged_sets, _ = await cleaner.cleanup_cycle()
    assert purged_sets == 1

    transport = FlakyTransport(server_app)
    async with _manager(temp_config, transport) as manager:
        [second] = await manager.upload_paths([str(path)])

    assert second.success
    assert second.result.restarted is True
    assert transport.merge_requests == 2
    assert transport.chunk_attempts == {0: 1, 1: 2, 2: 2}
    assert (server_settings.upload_dir / second.result.artifact_name).read_bytes() == b'aaaabbbbcccc'


@pytest.mark.asyncio
async def test_stale_marker_is_healed(server_app, server_settings, temp_config, tmp_path):
    path = tmp_path / 'notes.txt'
    path.write_bytes(b'some notes')

    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        [first] = await manager.upload_paths([str(path)])
    (server_settings.upload_dir / first.result.artifact_name).unlink()

    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        [second] = await manager.upload_paths([str(path)])

    assert second.success
    assert second.result.reused is False
    assert (server_settings.upload_dir / second.result.artifact_name).read_bytes() == b'some notes'


@pytest.mark.asyncio
async def test_batch_outcomes_keep_input_order(server_app, temp_config, tmp_path):
    temp_config.data['max_concurrent_transfers'] = 2
    paths = []
    for n in range(5):
        p = tmp_path / f'file{n}.bin'
        p.write_bytes(bytes([n]) * (n * 3 + 1))
        paths.append(str(p))
    paths.insert(2, str(tmp_path / 'missing.bin'))

    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        outcomes = await manager.upload_paths(paths)

    assert [o.path for o in outcomes] == paths
    assert [o.success for o in outcomes] == [True, True, False, True, True, True]


@pytest.mark.asyncio
async def test_images_are_compressed_before_upload(server_app, server_settings, temp_config, tmp_path):
    temp_config.data['compress_images'] = True
    temp_config.data['compression_format'] = 'jpeg'
    temp_config.data['compression_quality'] = 0.6
    path = tmp_path / 'photo.png'
    Image.new('RGB', (120, 80), (10, 120, 200)).save(path, format='PNG')

    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        [outcome] = await manager.upload_paths([str(path)])

    assert outcome.success, outcome.error
    assert re.fullmatch(r'photo-\d+\.jpg', outcome.result.artifact_name)
    stored = (server_settings.upload_dir / outcome.result.artifact_name).read_bytes()
    with Image.open(io.BytesIO(stored)) as img:
        assert img.format == 'JPEG'
        assert img.size == (120, 80)


@pytest.mark.asyncio
async def test_single_upload_fallback(server_app, server_settings, temp_config, sample_file):
    async with _manager(temp_config, FlakyTransport(server_app)) as manager:
        reply = await manager.upload_single(str(sample_file))

    assert reply.filename.startswith('test-')
    assert (server_settings.upload_dir / reply.filename).read_text() == 'Sample content for testing'
