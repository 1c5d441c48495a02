from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    debug: bool = False
    log_level: str = "INFO"

    # LLM
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_fast_model: str = "gpt-4o-mini"
    reply_timeout_seconds: float = 30.0
    confirmation_timeout_seconds_llm: float = 10.0
    reply_max_tokens: int = 500

    # WhatsApp (ChatFlow)
    chatflow_api_url: str = "https://app.chatflow.kz/api/v1/send-text"
    chatflow_presence_url: str = "https://app.chatflow.kz/api/v1/send-presence"
    chatflow_token: str | None = None
    chatflow_instance_id: str | None = None
    admin_whatsapp_id: str | None = None
    default_country_code: str = "55"

    # Google Calendar
    google_calendar_id: str = "primary"
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_refresh_token: str | None = None
    timezone_name: str = "America/Sao_Paulo"
    utc_offset_hours: int = -3

    # Session store
    session_store_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 0.5
    dedup_ttl_seconds: int = 600

    # Message batching
    debounce_base_seconds: float = 5.0
    debounce_max_seconds: float = 10.0
    debounce_typing_seconds: float = 1.0
    typing_window_seconds: float = 2.0
    burst_window_seconds: float = 1.0
    confirmation_timeout_seconds: float = 30.0

    # Playback
    segment_max_length: int = 300
    typing_chars_per_minute: int = 200
    typing_min_seconds: float = 2.0
    typing_max_seconds: float = 10.0
    typing_jitter: float = 0.2
    part_gap_min_seconds: float = 1.5
    part_gap_max_seconds: float = 2.5

    # Conversation
    conversation_idle_reset_minutes: int = 30
    history_max_messages: int = 10
    state_history_limit: int = 10

    # Intervention pause ladder (minutes per level)
    pause_durations_minutes: list[int] = [10, 45, 60]
    pause_sweep_interval_seconds: float = 60.0

    # Availability
    agenda_cache_ttl_minutes: int = 30
    agenda_days_ahead: int = 5
    agenda_cache_sweep_interval_seconds: float = 900.0
    slot_duration_hours: float = 2.0
    appointment_duration_minutes: int = 60
    list_days_ahead: int = 90
    morning_slots: list[str] = ["09:00", "10:00", "11:00"]
    afternoon_slots: list[str] = ["14:00", "15:00", "16:00", "17:00"]
    appointment_summary: str = "Ensaio Fotográfico (Agendado pelo Bot)"

    # Reminders
    reminders_enabled: bool = True
    reminder_hours: list[int] = [24, 2]
    reminder_confirmation_min_hours: int = 24
    reminder_confirmation_ttl_hours: int = 48
    reminder_check_interval_seconds: float = 300.0
    reminder_lookahead_events: int = 50

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
