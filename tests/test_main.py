import pytest

import main
from config import CRYPTO_CONFIG


def test_serve_refuses_the_plain_provider(monkeypatch):
    started = []
    monkeypatch.setitem(CRYPTO_CONFIG, "provider", "plain")
    monkeypatch.setattr(main.uvicorn, "run", lambda *args, **kwargs: started.append(args))
    with pytest.raises(SystemExit):
        main.serve()
    assert started == []
