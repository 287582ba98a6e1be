from sqlalchemy.engine import Engine

from libs.core.application.alert_emitter import AlertEmitter
from libs.core.application.analysis_queue import AnalysisQueue
from libs.core.application.audio_analyzer import AudioAnalyzer, AudioAnalyzerConfig
from libs.core.application.contracts import (
    AlertRepository,
    CloudFallback,
    InferenceBackend,
    JobRepository,
)
from libs.core.application.frame_analyzer import CascadeTimeouts, FrameAnalyzer
from libs.core.application.outcome_channel import OutcomeChannel
from libs.core.domain.entities import ConcernLevel
from libs.infra.frames import LocalFrameLoader
from libs.infra.inference.cloud import CloudFallbackClient
from libs.infra.inference.ollama import OllamaClient
from libs.infra.notify.webhook import WebhookAlertNotifier
from libs.infra.sql.repositories import (
    Base,
    SqlAlertRepository,
    SqlJobRepository,
    build_session_factory,
    create_sql_engine,
    init_models,
)
from services.analysis_gateway.infrastructure.memory_store import (
    InMemoryAlertRepository,
    InMemoryDatabase,
    InMemoryJobRepository,
)
from services.analysis_gateway.settings import Settings, get_settings

MEMORY_STORE_URL = "memory://"

settings = get_settings()
db = InMemoryDatabase()
engine: Engine | None = None


def _build_repositories(url: str) -> tuple[JobRepository, AlertRepository]:
    global engine
    if url.startswith(MEMORY_STORE_URL):
        return InMemoryJobRepository(db), InMemoryAlertRepository(db)
    engine = create_sql_engine(url)
    init_models(engine)
    session_factory = build_session_factory(engine)
    return SqlJobRepository(session_factory), SqlAlertRepository(session_factory)


def _default_backend() -> OllamaClient:
    return OllamaClient(
        host=settings.OLLAMA_HOST,
        triage_model=settings.OLLAMA_TRIAGE_MODEL,
        analysis_model=settings.OLLAMA_ANALYSIS_MODEL,
        read_timeout_sec=max(settings.TRIAGE_TIMEOUT_SEC, settings.DETAILED_TIMEOUT_SEC),
    )


def _default_cloud() -> CloudFallbackClient:
    return CloudFallbackClient(
        openrouter_api_key=settings.OPENROUTER_API_KEY,
        openai_api_key=settings.OPENAI_API_KEY,
        anthropic_api_key=settings.ANTHROPIC_API_KEY,
        preferred_provider=settings.CLOUD_PREFERRED_PROVIDER,
        timeout_sec=settings.FALLBACK_TIMEOUT_SEC,
    )


def _build_frame_analyzer(
    backend: InferenceBackend,
    cloud: CloudFallback | None,
) -> FrameAnalyzer:
    return FrameAnalyzer(
        backend=backend,
        frame_loader=frame_loader,
        cloud=cloud,
        timeouts=CascadeTimeouts(
            triage=settings.TRIAGE_TIMEOUT_SEC,
            detailed=settings.DETAILED_TIMEOUT_SEC,
            fallback=settings.FALLBACK_TIMEOUT_SEC,
        ),
        triage_model=settings.OLLAMA_TRIAGE_MODEL,
        detailed_model=settings.OLLAMA_ANALYSIS_MODEL,
    )


def _build_queue(analyzer: FrameAnalyzer) -> AnalysisQueue:
    return AnalysisQueue(
        job_repository=job_repository,
        frame_analyzer=analyzer,
        audio_analyzer=audio_analyzer,
        outcome_channel=outcome_channel,
        concurrency=settings.QUEUE_CONCURRENCY,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        poll_interval_sec=settings.QUEUE_POLL_INTERVAL_SEC,
    )


job_repository, alert_repository = _build_repositories(settings.JOB_STORE_URL)
frame_loader = LocalFrameLoader(settings.FRAMES_DIR or None)
audio_analyzer = AudioAnalyzer(
    AudioAnalyzerConfig(
        silence_threshold_db=settings.AUDIO_SILENCE_THRESHOLD_DB,
        loud_threshold_db=settings.AUDIO_LOUD_THRESHOLD_DB,
        fall_detection_enabled=settings.AUDIO_FALL_DETECTION_ENABLED,
    )
)
outcome_channel = OutcomeChannel()
inference_backend: InferenceBackend = _default_backend()
frame_analyzer = _build_frame_analyzer(inference_backend, _default_cloud())
analysis_queue = _build_queue(frame_analyzer)
alert_emitter = AlertEmitter(
    alert_repository=alert_repository,
    notifier=(
        WebhookAlertNotifier(settings.ALERT_WEBHOOK_URL)
        if settings.ALERT_WEBHOOK_URL
        else None
    ),
    min_concern=ConcernLevel(settings.ALERT_MIN_CONCERN),
)


def get_app_settings() -> Settings:
    return settings


def get_analysis_queue() -> AnalysisQueue:
    return analysis_queue


def get_frame_analyzer() -> FrameAnalyzer:
    return frame_analyzer


def get_audio_analyzer() -> AudioAnalyzer:
    return audio_analyzer


def get_inference_backend() -> InferenceBackend:
    return inference_backend


def get_alert_repository() -> AlertRepository:
    return alert_repository


def get_alert_emitter() -> AlertEmitter:
    return alert_emitter


def get_outcome_channel() -> OutcomeChannel:
    return outcome_channel


def use_backends(
    backend: InferenceBackend,
    cloud: CloudFallback | None = None,
) -> None:
    """Swap the inference collaborators; call before the queue is started."""
    global inference_backend, frame_analyzer, analysis_queue
    if analysis_queue.running:
        raise RuntimeError("Cannot swap backends while the queue is running")
    inference_backend = backend
    frame_analyzer = _build_frame_analyzer(backend, cloud)
    analysis_queue = _build_queue(frame_analyzer)


def reset_state() -> None:
    global audio_analyzer
    db.clear()
    if engine is not None:
        Base.metadata.drop_all(bind=engine)
        init_models(engine)
    audio_analyzer = AudioAnalyzer(audio_analyzer.config)
    use_backends(_default_backend(), _default_cloud())
