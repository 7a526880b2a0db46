"""
Configuration management for nearwave.
Provides YAML configuration loading and the immutable per-session modem settings.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
import yaml


class Config:
    """Configuration manager for nearwave."""
    
    DEFAULT_CONFIG_PATHS = [
        Path("config.yaml"),
        Path("nearwave.yaml"),
        Path.home() / ".config" / "nearwave" / "config.yaml",
        Path("/etc/nearwave/config.yaml"),
    ]
    
    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.
        
        Args:
            config_path: Path to configuration file. If None, searches default paths.
        """
        self._config: Dict[str, Any] = {}
        self._config_path: Optional[Path] = None
        self._load_config(config_path)
    
    def _load_config(self, config_path: Optional[str] = None) -> None:
        """Load configuration from file, layered over the defaults."""
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            self._config_path = path
            self._config = self._merge(self._get_defaults(), self._read(path))
            return
        
        for path in self.DEFAULT_CONFIG_PATHS:
            if path.exists():
                self._config_path = path
                self._config = self._merge(self._get_defaults(), self._read(path))
                return
        
        self._config = self._get_defaults()
    
    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    
    @classmethod
    def _merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into base."""
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = cls._merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    
    def _get_defaults(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "audio": {
                "sample_rate": 44100,
                "blocksize": 512,
                "input_device": None,
                "output_device": None,
            },
            "modem": {
                "symbol_duration_ms": 70,
                "freq0_hz": 1500,
                "freq1_hz": 2200,
                "preamble_byte": 0xAA,
                "preamble_repeats": 6,
                "max_buffer_bits": 8192,
                "fft_size": 2048,
                "gain": 0.25,
                "start_delay_s": 0.05,
                "completion_margin_ms": 20,
                "drain_backlog": False,
            },
            "profile": {
                "name": None,
                "picture": None,
            },
            "ui": {
                "colors": {
                    "sending": "blue",
                    "sent": "green",
                    "received": "cyan",
                    "warning": "yellow",
                    "error": "red",
                },
                "suppress_repeats_s": 30,
            },
            "logging": {
                "enabled": True,
                "file": "nearwave_session.log",
                "format": "text",
                "timestamps": True,
                "level": "info",
            },
        }
    
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.
        
        Args:
            key: Configuration key (e.g., "modem.freq0_hz")
            default: Default value if key not found
            
        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value
    
    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value using dot notation.
        
        Args:
            key: Configuration key (e.g., "modem.gain")
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
    
    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to file.
        
        Args:
            path: Path to save to. If None, uses the loaded path or config.yaml
        """
        save_path = Path(path) if path else (self._config_path or Path("config.yaml"))
        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False, sort_keys=False)
    
    @property
    def path(self) -> Optional[Path]:
        """Path the configuration was loaded from, if any."""
        return self._config_path
    
    @property
    def audio(self) -> Dict[str, Any]:
        """Get audio configuration."""
        return self._config.get("audio", {})
    
    @property
    def modem(self) -> Dict[str, Any]:
        """Get modem configuration."""
        return self._config.get("modem", {})
    
    @property
    def profile(self) -> Dict[str, Any]:
        """Get local profile configuration."""
        return self._config.get("profile", {})
    
    @property
    def ui(self) -> Dict[str, Any]:
        """Get UI configuration."""
        return self._config.get("ui", {})

    @property
    def logging_config(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self._config.get("logging", {})
    
    def __repr__(self) -> str:
        return f"Config(path={self._config_path})"


@dataclass(frozen=True)
class ModemConfig:
    """Immutable acoustic modem settings for one session."""
    symbol_duration_ms: float = 70.0
    freq0_hz: float = 1500.0
    freq1_hz: float = 2200.0
    preamble_byte: int = 0xAA
    preamble_repeats: int = 6
    max_buffer_bits: int = 8192
    fft_size: int = 2048
    sample_rate: int = 44100
    gain: float = 0.25
    start_delay_s: float = 0.05  # lead time before the first symbol
    completion_margin_ms: float = 20.0
    drain_backlog: bool = False
    
    def __post_init__(self):
        """Validate configuration."""
        if self.symbol_duration_ms <= 0:
            raise ValueError("symbol_duration_ms must be positive")
        if self.freq0_hz <= 0 or self.freq1_hz <= 0:
            raise ValueError("tone frequencies must be positive")
        if self.freq0_hz == self.freq1_hz:
            raise ValueError("freq0_hz and freq1_hz must differ")
        nyquist = self.sample_rate / 2
        if self.freq0_hz >= nyquist or self.freq1_hz >= nyquist:
            raise ValueError(f"tone frequencies must be below {nyquist} Hz")
        if not 0 <= self.preamble_byte <= 0xFF:
            raise ValueError("preamble_byte must be a single byte")
        if self.preamble_repeats < 1:
            raise ValueError("preamble_repeats must be at least 1")
        if self.fft_size < 2 or self.fft_size & (self.fft_size - 1):
            raise ValueError("fft_size must be a power of two")
        if not 0 < self.gain <= 1:
            raise ValueError("gain must be in (0, 1]")
        if self.max_buffer_bits < self.header_bits:
            raise ValueError("max_buffer_bits cannot hold a frame header")
    
    @property
    def symbol_duration_s(self) -> float:
        return self.symbol_duration_ms / 1000.0
    
    @property
    def preamble_bits(self) -> int:
        return self.preamble_repeats * 8
    
    @property
    def header_bits(self) -> int:
        """Preamble plus the 16-bit length field."""
        return self.preamble_bits + 16
    
    @property
    def bin_width(self) -> float:
        return self.sample_rate / self.fft_size
    
    @classmethod
    def from_config(cls, config: Optional[Config] = None, **overrides: Any) -> "ModemConfig":
        """
        Build modem settings from a Config.
        
        Args:
            config: Loaded configuration. Uses defaults if None.
            **overrides: Field values that take precedence over the config
            
        Returns:
            ModemConfig instance
        """
        config = config or Config()
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in config.modem.items() if k in names and v is not None}
        if config.audio.get("sample_rate"):
            values["sample_rate"] = int(config.audio["sample_rate"])
        values.update({k: v for k, v in overrides.items() if k in names and v is not None})
        return cls(**values)
