"""
회의 녹음 전사 도구 진입점

역할:
- transcribe: WAV 파일 하나를 전사 (상한선 초과 시 VAD/크기 분할 후 병합)
- record: WAV 파일을 녹음 스트림처럼 재생하여 시간 단위 청크로 저장한 뒤 청크별 전사
- analyze: VAD 무음 구간과 분할 계획 출력 (전사 없음)
- models: 로컬 Whisper 모델 목록 조회 및 다운로드
- 설정 또는 전사 오류 시 종료 코드 1

실행 예시:
    python main.py transcribe meeting.wav
    python main.py transcribe meeting.wav --mode api --output meeting.txt
    python main.py record meeting.wav --chunk-duration 300
    python main.py analyze meeting.wav
    python main.py models --download base
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import soundfile as sf

from src.audio.vad_filter import VadFilter
from src.audio.vad_splitter import plan_split
from src.audio.wav_container import InvalidContainerError, parse_metadata
from src.capture.recording_session import RecordingSession
from src.config.config_manager import ConfigLoadError, ConfigManager
from src.config.schema import AppConfig
from src.logging import setup_logging
from src.stt.errors import TranscriptionError
from src.stt.factory import TranscriptionFactory
from src.stt.model_manager import ModelDownloadError, ModelManager

logger = logging.getLogger(__name__)

# 녹음 재생 시 한 번에 기록하는 블록 길이 (초)
_RECORD_BLOCK_SEC = 0.1


# =============================================================================
# 명령 처리
# =============================================================================

async def _run_transcribe(config: AppConfig, args: argparse.Namespace) -> int:
    """WAV 파일 하나를 전사하고 결과를 출력하거나 파일로 저장합니다."""
    provider = TranscriptionFactory.create(config)
    text = await provider.transcribe_file(args.file)
    _write_output(text, args.output)
    return 0


async def _run_record(config: AppConfig, args: argparse.Namespace) -> int:
    """
    WAV 파일을 녹음 스트림으로 재생하여 청크 파일로 나누고 청크별로 전사합니다.

    실제 시간 대신 기록한 프레임 수로 경과 시간을 계산하므로
    파일 길이만큼 기다리지 않고 회전 주기가 적용됩니다.
    """
    info = sf.info(args.file)
    config_dict = config.model_dump()
    config_dict["recording"]["sample_rate"] = info.samplerate
    config_dict["recording"]["channels"] = info.channels
    if args.chunk_duration:
        config_dict["recording"]["chunk_duration_sec"] = args.chunk_duration
    config = AppConfig(**config_dict)

    provider = TranscriptionFactory.create(config)
    written_frames = 0

    def _elapsed_clock() -> float:
        return written_frames / info.samplerate

    session = RecordingSession(config, provider, clock=_elapsed_clock)
    session.start()
    block_frames = max(1, int(info.samplerate * _RECORD_BLOCK_SEC))
    try:
        for block in sf.blocks(args.file, blocksize=block_frames, dtype="int16", always_2d=True):
            written_frames += session.write(block.tobytes())
            session.check_rotation()
    finally:
        chunk_paths = await session.stop()

    logger.info(f"녹음 재생 완료: {written_frames}프레임, 청크 {len(chunk_paths)}개")
    try:
        result = await session.transcribe(chunk_paths)
    finally:
        if not args.keep_chunks:
            session.cleanup(chunk_paths)

    if result.is_partial:
        logger.warning(f"일부 청크 전사 실패: {result.failed_count}/{result.total_chunks}")
    _write_output(result.combined_text, args.output)
    return 0


def _run_analyze(config: AppConfig, args: argparse.Namespace) -> int:
    """VAD 무음 구간과 분할 계획을 출력합니다."""
    data = Path(args.file).read_bytes()
    metadata = parse_metadata(data)
    vad_filter = VadFilter(config.audio.vad)
    silences = vad_filter.detect_silences(data)
    plan = plan_split(
        data,
        config.audio.vad,
        config.audio.max_chunk_bytes,
        use_vad=config.stt.use_vad,
    )

    print(
        f"{args.file}: {metadata.sample_rate}Hz, {metadata.channels}ch, "
        f"{metadata.bits_per_sample}bit, {metadata.duration_ms / 1000:.1f}초, {len(data)}바이트"
    )
    print(f"무음 구간 {len(silences)}개")
    for segment in silences:
        print(f"  {segment.start_ms:>9}ms ~ {segment.end_ms:>9}ms  (평균 RMS {segment.avg_rms:.4f})")
    print(f"분할 방식: {plan.method}, 청크 {len(plan.chunks)}개")
    for chunk_number, chunk in enumerate(plan.chunks, start=1):
        print(f"  청크 {chunk_number}: {len(chunk)}바이트")
    return 0


def _run_models(config: AppConfig, args: argparse.Namespace) -> int:
    """로컬 모델 목록을 출력하거나 지정한 모델을 다운로드합니다."""
    manager = ModelManager(config.stt.local.models_dir)

    if args.download:
        def _print_progress(downloaded_bytes: int, total_bytes: int) -> None:
            percent = downloaded_bytes * 100 // max(total_bytes, 1)
            print(f"\r다운로드 {percent:3d}%", end="", flush=True)

        model_path = manager.download_model(args.download, on_progress=_print_progress)
        print(f"\n저장 위치: {model_path}")
        return 0

    if args.delete:
        deleted = manager.delete_model(args.delete)
        print(f"{args.delete}: {'삭제됨' if deleted else '다운로드되어 있지 않음'}")
        return 0

    for entry in manager.list_models():
        status = "다운로드됨" if entry["downloaded"] else "-"
        print(f"{entry['model']:<8} {entry['size_bytes'] / 1_000_000:>8.0f}MB  {status:<6} {entry['path']}")
    return 0


# =============================================================================
# 진입점
# =============================================================================

def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """커맨드라인 인자를 파싱합니다."""
    parser = argparse.ArgumentParser(description="회의 녹음 WAV 분할 및 전사 도구")
    parser.add_argument(
        "--config", default="config.yaml", help="설정 파일 경로 (기본: config.yaml, 없으면 기본값)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe_parser = subparsers.add_parser("transcribe", help="WAV 파일 전사")
    transcribe_parser.add_argument("file", help="전사할 WAV 파일 경로")
    transcribe_parser.add_argument("--mode", choices=["local", "api", "auto"], help="전사 모드 (설정 오버라이드)")
    transcribe_parser.add_argument("--no-vad", action="store_true", help="VAD 분할 대신 크기 분할 사용")
    transcribe_parser.add_argument("--output", help="결과 저장 파일 (생략 시 표준 출력)")

    record_parser = subparsers.add_parser("record", help="WAV 파일을 녹음 청크로 나누어 전사")
    record_parser.add_argument("file", help="녹음 스트림으로 재생할 WAV 파일 경로")
    record_parser.add_argument("--mode", choices=["local", "api", "auto"], help="전사 모드 (설정 오버라이드)")
    record_parser.add_argument("--chunk-duration", type=float, default=0.0, help="청크 회전 주기 (초)")
    record_parser.add_argument("--keep-chunks", action="store_true", help="전사 후 청크 파일 유지")
    record_parser.add_argument("--output", help="결과 저장 파일 (생략 시 표준 출력)")

    analyze_parser = subparsers.add_parser("analyze", help="무음 구간 및 분할 계획 출력")
    analyze_parser.add_argument("file", help="분석할 WAV 파일 경로")
    analyze_parser.add_argument("--no-vad", action="store_true", help="크기 분할 기준으로 계획")

    models_parser = subparsers.add_parser("models", help="로컬 Whisper 모델 관리")
    models_group = models_parser.add_mutually_exclusive_group()
    models_group.add_argument("--download", metavar="MODEL", help="모델 다운로드")
    models_group.add_argument("--delete", metavar="MODEL", help="모델 삭제")

    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> AppConfig:
    """설정 파일을 로드하고 커맨드라인 오버라이드를 적용합니다."""
    manager = ConfigManager()
    if Path(args.config).exists():
        config = manager.load(args.config)
    else:
        config = manager.load_defaults()

    mode = getattr(args, "mode", None)
    no_vad = getattr(args, "no_vad", False)
    if not mode and not no_vad:
        return config

    # Pydantic 모델은 dict로 재구성하여 다시 검증
    config_dict = config.model_dump()
    if mode:
        config_dict["stt"]["mode"] = mode
    if no_vad:
        config_dict["stt"]["use_vad"] = False
    return AppConfig(**config_dict)


def _write_output(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        logger.info(f"전사 결과 저장: {output} ({len(text)}자)")
    else:
        print(text)


async def _dispatch(config: AppConfig, args: argparse.Namespace) -> int:
    if args.command == "transcribe":
        return await _run_transcribe(config, args)
    if args.command == "record":
        return await _run_record(config, args)
    if args.command == "analyze":
        return _run_analyze(config, args)
    return _run_models(config, args)


def main(argv: Optional[list[str]] = None) -> int:
    """CLI 메인 함수입니다. 종료 코드를 반환합니다."""
    args = _parse_args(argv)

    try:
        config = _load_config(args)
    except ConfigLoadError as exc:
        print(f"설정 로드 실패: {exc}", file=sys.stderr)
        return 1

    session_id = setup_logging(config)
    logger.info(f"시작: command={args.command}, session_id={session_id}, mode={config.stt.mode}")

    try:
        return asyncio.run(_dispatch(config, args))
    except TranscriptionError as exc:
        logger.error(f"전사 실패: {exc!r}")
        print(f"전사 실패: {exc}\n{exc.get_recovery_message(config.stt.language)}", file=sys.stderr)
        return 1
    except (InvalidContainerError, sf.LibsndfileError, ModelDownloadError, OSError, ValueError) as exc:
        logger.error(f"처리 실패: {exc}")
        print(f"처리 실패: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
