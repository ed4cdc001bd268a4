"""
녹음 캡처 모듈 패키지

구성:
- recording_session: PCM 스트림을 시간 단위 WAV 청크 파일로 저장하고 녹음 종료 후 청크별 전사
"""
