"""
LocalWhisperProvider 단위 테스트

실제 faster-whisper 모델 없이 인식기 팩토리를 주입하여 테스트합니다.
임시 WAV 파일 생성 위치는 tempfile.tempdir를 tmp_path 하위로 바꿔 확인합니다.

검증 항목:
- 모델이 없고 자동 다운로드가 꺼져 있으면 임시 파일 생성 전에 복구 불가 에러
- 자동 다운로드 시 ModelManager.download_model에 진행률 콜백 전달
- 다운로드 실패는 복구 가능 에러로 변환
- 인식기는 최초 1회만 로드, 언어/어휘 힌트 전달
- 성공/실패/취소 모든 경로에서 임시 파일 삭제
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.audio import WavMetadata
from src.audio.wav_container import build_wav
from src.config.schema import AppConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.local_whisper import SCRATCH_FILE_PREFIX, LocalWhisperProvider, _write_scratch_file
from src.stt.model_manager import MODEL_CATALOG, ModelDownloadError, ModelManager


# =============================================================================
# 픽스처 / 테스트 헬퍼
# =============================================================================

@pytest.fixture
def scratch_dir(tmp_path, monkeypatch) -> Path:
    """임시 WAV 파일이 생성되는 디렉토리를 테스트 전용으로 교체합니다."""
    directory = tmp_path / "scratch"
    directory.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(directory))
    return directory


def _make_config(tmp_path, auto_download: bool = False, vocabulary: list[str] = None) -> AppConfig:
    return AppConfig(**{
        "stt": {
            "mode": "local",
            "language": "ko",
            "vocabulary": vocabulary or [],
            "local": {
                "model": "base",
                "auto_download": auto_download,
                "models_dir": str(tmp_path / "models"),
            },
        },
    })


def _install_model(tmp_path, name: str = "base") -> Path:
    model_path = tmp_path / "models" / name
    model_path.mkdir(parents=True)
    for filename in MODEL_CATALOG[name].files:
        (model_path / filename).write_bytes(b"\x00")
    return model_path


def _write_wav(tmp_path) -> Path:
    path = tmp_path / "meeting.wav"
    metadata = WavMetadata(sample_rate=16000, channels=1, bits_per_sample=16, data_size=0)
    path.write_bytes(build_wav(metadata, b"\x10\x00" * 16000))
    return path


def _make_recognizer_factory(text: str = " 로컬 전사 결과 ", error: Exception = None):
    recognizer = MagicMock()
    seen_paths: list[str] = []

    def _transcribe(audio_path, language=None, initial_prompt=None):
        seen_paths.append(audio_path)
        assert Path(audio_path).exists()
        if error is not None:
            raise error
        return text

    recognizer.transcribe.side_effect = _transcribe
    factory = MagicMock(return_value=recognizer)
    return factory, recognizer, seen_paths


# =============================================================================
# 모델 준비
# =============================================================================

@pytest.mark.asyncio
async def test_missing_model_without_auto_download_fails_before_scratch(tmp_path, scratch_dir):
    """모델이 없고 자동 다운로드가 꺼져 있으면 임시 파일 없이 복구 불가 에러를 냅니다."""
    config = _make_config(tmp_path, auto_download=False)
    factory, _, _ = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.transcribe_file(_write_wav(tmp_path))

    assert exc_info.value.recoverable is False
    assert exc_info.value.code == ErrorCode.FAILED
    assert list(scratch_dir.iterdir()) == []
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_auto_download_passes_progress_callback(tmp_path, scratch_dir):
    config = _make_config(tmp_path, auto_download=True)
    manager = MagicMock(spec=ModelManager)
    manager.is_model_downloaded.return_value = False
    manager.download_model.return_value = tmp_path / "models" / "base"
    factory, _, _ = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, manager, factory)

    text = await provider.transcribe_buffer(_write_wav(tmp_path).read_bytes())

    assert text == "로컬 전사 결과"
    name, on_progress = manager.download_model.call_args.args
    assert name == "base"
    on_progress(50, 100)  # 콜백은 예외 없이 진행률을 기록해야 함
    factory.assert_called_once_with(tmp_path / "models" / "base", config.stt.local)


@pytest.mark.asyncio
async def test_download_failure_is_recoverable(tmp_path, scratch_dir):
    config = _make_config(tmp_path, auto_download=True)
    manager = MagicMock(spec=ModelManager)
    manager.is_model_downloaded.return_value = False
    cause = ModelDownloadError("HTTP 503")
    manager.download_model.side_effect = cause
    factory, _, _ = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, manager, factory)

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.ensure_model()

    assert exc_info.value.recoverable is True
    assert exc_info.value.original_error is cause


@pytest.mark.asyncio
async def test_recognizer_load_failure_is_not_recoverable(tmp_path, scratch_dir):
    _install_model(tmp_path)
    config = _make_config(tmp_path)
    factory = MagicMock(side_effect=RuntimeError("unsupported compute type"))
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.transcribe_buffer(_write_wav(tmp_path).read_bytes())

    assert exc_info.value.recoverable is False
    assert list(scratch_dir.iterdir()) == []


# =============================================================================
# 전사
# =============================================================================

@pytest.mark.asyncio
async def test_transcribe_uses_scratch_file_and_removes_it(tmp_path, scratch_dir):
    _install_model(tmp_path)
    config = _make_config(tmp_path, vocabulary=["스프린트", "회고"])
    factory, recognizer, seen_paths = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)
    wav_path = _write_wav(tmp_path)

    text = await provider.transcribe_file(wav_path)

    assert text == "로컬 전사 결과"
    assert Path(seen_paths[0]).name.startswith(SCRATCH_FILE_PREFIX)
    assert Path(seen_paths[0]).parent == scratch_dir
    assert list(scratch_dir.iterdir()) == []
    recognizer.transcribe.assert_called_once_with(seen_paths[0], "ko", "스프린트, 회고")


@pytest.mark.asyncio
async def test_recognizer_loaded_once(tmp_path, scratch_dir):
    _install_model(tmp_path)
    config = _make_config(tmp_path)
    factory, recognizer, _ = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)
    data = _write_wav(tmp_path).read_bytes()

    await provider.transcribe_buffer(data)
    await provider.transcribe_buffer(data)

    factory.assert_called_once()
    assert recognizer.transcribe.call_count == 2
    assert provider.get_model_info()["loaded"] is True


@pytest.mark.asyncio
async def test_scratch_file_removed_when_recognizer_fails(tmp_path, scratch_dir):
    _install_model(tmp_path)
    config = _make_config(tmp_path)
    cause = RuntimeError("CUDA out of memory")
    factory, _, _ = _make_recognizer_factory(error=cause)
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.transcribe_buffer(_write_wav(tmp_path).read_bytes())

    assert exc_info.value.original_error is cause
    assert list(scratch_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_scratch_file_removed_when_cancelled_during_write(tmp_path, scratch_dir):
    """임시 파일 쓰기 도중 작업이 취소되어도 파일이 남지 않는지 확인합니다."""
    _install_model(tmp_path)
    config = _make_config(tmp_path)
    factory, recognizer, _ = _make_recognizer_factory()
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir), factory)
    data = _write_wav(tmp_path).read_bytes()

    async def _cancel_on_write(func, *args, **kwargs):
        if func is _write_scratch_file:
            raise asyncio.CancelledError
        return func(*args, **kwargs)

    with patch("src.stt.local_whisper.asyncio.to_thread", new=_cancel_on_write):
        with pytest.raises(asyncio.CancelledError):
            await provider.transcribe_buffer(data)

    assert list(scratch_dir.iterdir()) == []
    recognizer.transcribe.assert_not_called()


def test_model_info_reports_download_state(tmp_path):
    config = _make_config(tmp_path)
    provider = LocalWhisperProvider(config, ModelManager(config.stt.local.models_dir))

    info = provider.get_model_info()

    assert info["model"] == "base"
    assert info["downloaded"] is False
    assert info["loaded"] is False
    assert provider.is_model_ready() is False

    _install_model(tmp_path)
    assert provider.is_model_ready() is True
