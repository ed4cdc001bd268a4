"""
로컬 Whisper 모델 관리 모듈입니다.

역할:
- faster-whisper(CTranslate2) 모델 디렉토리의 다운로드 여부 확인 및 경로 제공
- Hugging Face에서 모델 파일을 스트리밍 다운로드 (임시 디렉토리에 받은 뒤 이름 변경)
- 다운로드 진행률 콜백 (받은 바이트, 전체 바이트) 호출
- 모델 목록 조회 및 삭제

사용 예시:
    >>> manager = ModelManager("~/.mch/models/whisper")
    >>> if not manager.is_model_downloaded("base"):
    ...     manager.download_model("base", on_progress=lambda done, total: print(done, total))
    >>> print(manager.get_model_path("base"))
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

# 모델 파일 저장소 URL 형식
HF_RESOLVE_URL = "https://huggingface.co/{repo}/resolve/main/{filename}"

# 다운로드 스트리밍 블록 크기 (1MiB)
DOWNLOAD_BLOCK_BYTES = 1024 * 1024

# HTTP 요청 타임아웃 (연결, 읽기) 초
DOWNLOAD_TIMEOUT_SEC = (10, 60)

# (받은 바이트, 전체 바이트) -> None
DownloadProgressCallback = Callable[[int, int], None]

_BASE_FILES = ("config.json", "model.bin", "tokenizer.json", "vocabulary.txt")
_LARGE_V3_FILES = ("config.json", "model.bin", "preprocessor_config.json", "tokenizer.json", "vocabulary.json")


@dataclass(frozen=True)
class ModelInfo:
    """
    다운로드 가능한 모델 정보입니다.

    필드:
        name: 모델 이름 (설정값)
        repo: Hugging Face 저장소 이름
        files: 모델 디렉토리에 있어야 하는 파일 목록
        size_bytes: 대략적인 전체 크기 (Content-Length를 모를 때 진행률 계산에 사용)
    """
    name: str
    repo: str
    files: tuple[str, ...]
    size_bytes: int


MODEL_CATALOG: dict[str, ModelInfo] = {
    "tiny": ModelInfo("tiny", "Systran/faster-whisper-tiny", _BASE_FILES, 75_000_000),
    "base": ModelInfo("base", "Systran/faster-whisper-base", _BASE_FILES, 145_000_000),
    "small": ModelInfo("small", "Systran/faster-whisper-small", _BASE_FILES, 484_000_000),
    "medium": ModelInfo("medium", "Systran/faster-whisper-medium", _BASE_FILES, 1_530_000_000),
    "large": ModelInfo("large", "Systran/faster-whisper-large-v3", _LARGE_V3_FILES, 3_090_000_000),
}


class ModelDownloadError(Exception):
    """모델 다운로드 실패 시 발생하는 에러입니다."""
    pass


class ModelManager:
    """
    로컬 Whisper 모델 파일을 관리하는 클래스입니다.

    모델은 models_dir/<모델 이름>/ 디렉토리에 저장되며,
    카탈로그에 정의된 파일이 모두 있어야 다운로드 완료로 판단합니다.

    파라미터:
        models_dir: 모델 저장 디렉토리 (~ 확장 지원)
        session: 주입할 requests.Session (None이면 생성)
    """

    def __init__(
        self,
        models_dir: str | Path = "~/.mch/models/whisper",
        session: Optional[requests.Session] = None,
    ) -> None:
        self._models_dir = Path(models_dir).expanduser()
        self._session = session or requests.Session()

    def get_models_dir(self) -> Path:
        return self._models_dir

    def get_model_info(self, name: str) -> ModelInfo:
        """
        모델 카탈로그 항목을 반환합니다.

        에러:
            ValueError: 카탈로그에 없는 모델 이름
        """
        try:
            return MODEL_CATALOG[name]
        except KeyError:
            raise ValueError(
                f"지원하지 않는 모델: '{name}' (지원: {', '.join(MODEL_CATALOG)})"
            ) from None

    def get_model_path(self, name: str) -> Path:
        """모델 디렉토리 경로를 반환합니다. 존재 여부와 무관합니다."""
        self.get_model_info(name)
        return self._models_dir / name

    def is_model_downloaded(self, name: str) -> bool:
        """모델 디렉토리에 필요한 파일이 모두 있는지 확인합니다."""
        info = self.get_model_info(name)
        model_path = self._models_dir / name
        return all((model_path / filename).is_file() for filename in info.files)

    def list_models(self) -> list[dict]:
        """카탈로그의 모든 모델과 다운로드 상태를 반환합니다."""
        return [
            {
                "model": info.name,
                "downloaded": self.is_model_downloaded(info.name),
                "path": str(self._models_dir / info.name),
                "size_bytes": info.size_bytes,
            }
            for info in MODEL_CATALOG.values()
        ]

    def download_model(
        self,
        name: str,
        on_progress: Optional[DownloadProgressCallback] = None,
    ) -> Path:
        """
        모델 파일을 다운로드하고 모델 디렉토리 경로를 반환합니다.

        처리 순서:
        1. 이미 다운로드되어 있으면 바로 반환
        2. <모델>.tmp 디렉토리에 파일별 스트리밍 다운로드
        3. 모든 파일 완료 후 최종 경로로 이름 변경
        4. 실패 시 임시 디렉토리 삭제

        파라미터:
            name: 모델 이름
            on_progress: 블록을 받을 때마다 (받은 바이트, 전체 바이트)로 호출되는 콜백

        반환값:
            Path: 모델 디렉토리 경로

        에러:
            ModelDownloadError: HTTP 오류 또는 파일 쓰기 실패 시
        """
        info = self.get_model_info(name)
        model_path = self._models_dir / name
        if self.is_model_downloaded(name):
            logger.debug(f"모델 이미 존재: {model_path}")
            return model_path

        temp_path = self._models_dir / f"{name}.tmp"
        if temp_path.exists():
            shutil.rmtree(temp_path)
        temp_path.mkdir(parents=True, exist_ok=True)

        logger.info(f"모델 다운로드 시작: {info.repo} → {model_path}")
        downloaded_bytes = 0

        try:
            for filename in info.files:
                url = HF_RESOLVE_URL.format(repo=info.repo, filename=filename)
                downloaded_bytes = self._download_file(
                    url,
                    temp_path / filename,
                    downloaded_bytes,
                    info.size_bytes,
                    on_progress,
                )

            if model_path.exists():
                shutil.rmtree(model_path)
            temp_path.rename(model_path)

        except (requests.RequestException, OSError) as exc:
            shutil.rmtree(temp_path, ignore_errors=True)
            error_message = f"모델 다운로드 실패 ({name}): {exc}"
            logger.error(error_message)
            raise ModelDownloadError(error_message) from exc

        logger.info(f"모델 다운로드 완료: {name}, {downloaded_bytes}바이트")
        return model_path

    def delete_model(self, name: str) -> bool:
        """모델 디렉토리를 삭제합니다. 삭제했으면 True, 없었으면 False를 반환합니다."""
        model_path = self.get_model_path(name)
        if not model_path.exists():
            return False
        shutil.rmtree(model_path)
        logger.info(f"모델 삭제 완료: {model_path}")
        return True

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    def _download_file(
        self,
        url: str,
        destination: Path,
        downloaded_before: int,
        expected_total: int,
        on_progress: Optional[DownloadProgressCallback],
    ) -> int:
        """파일 하나를 스트리밍으로 저장하고 누적 다운로드 바이트 수를 반환합니다."""
        downloaded_bytes = downloaded_before
        with self._session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT_SEC) as response:
            response.raise_for_status()
            with open(destination, "wb") as output_file:
                for block in response.iter_content(chunk_size=DOWNLOAD_BLOCK_BYTES):
                    if not block:
                        continue
                    output_file.write(block)
                    downloaded_bytes += len(block)
                    if on_progress is not None:
                        on_progress(downloaded_bytes, max(expected_total, downloaded_bytes))
        logger.debug(f"파일 다운로드 완료: {destination.name}")
        return downloaded_bytes
