#!/usr/bin/env python3
"""
Entry point.

  python main.py demo    register four participants, generate, reveal every match
  python main.py serve   run the HTTP API (uvicorn)
"""

import asyncio
import sys

import uvicorn

import keys
from api import create_app
from config import CRYPTO_CONFIG, SANTA_CONFIG, SERVER_CONFIG
from providers import make_providers
from santa import SecretSanta
from santa_log import SantaLogger
from store import JsonFileStore, MemoryStore


def build_game(persist: bool = True) -> SecretSanta:
  """Coordinator wired from config: providers, store and file logger."""
  encryption, gateway = make_providers(CRYPTO_CONFIG["provider"])
  state_file = SANTA_CONFIG["state_file"]
  store = JsonFileStore(state_file) if persist and state_file else MemoryStore()
  game = SecretSanta(SANTA_CONFIG["admin"], encryption, gateway, store=store)
  game.subscribe(SantaLogger(SERVER_CONFIG["log_dir"]))
  return game


async def run_demo() -> None:
  """
  End-to-end example: participants join with passwords, the admin generates
  matches, each participant gets their match both through the gateway
  callback and by opening a sealed copy with their own password.
  """
  game = build_game(persist=False)
  names = ["One", "Two", "Three", "Four"]

  for nm in names:
    game.join(nm, keys.verify_key_b64(nm.lower()))

  game.generate_matches(game.admin)

  print("=== Encrypted match handles ===")
  for nm in names:
    print(nm, game.encryption.serialize(game.get_match_handle(nm)))

  print("\n=== Revealed through the decryption gateway ===")
  request_ids = {nm: game.request_match(nm) for nm in names}
  relay = asyncio.create_task(game.gateway.relay(delay=0.1))
  for nm, request_id in request_ids.items():
    match_index = await game.wait_for_reveal(request_id, timeout=5)
    print(f"{nm} -> {game.get_participant(match_index)}")
  await relay

  print("\n=== Opened locally with each participant's password ===")
  for nm in names:
    sealed = game.reencrypt_match(nm)
    match_index = keys.decode_word(keys.open_with_password(nm.lower(), sealed))
    print(f"{nm} -> {game.get_participant(match_index)}")

  game.reset(game.admin)


def serve() -> None:
  if CRYPTO_CONFIG["provider"] == "plain":
    raise SystemExit("refusing to serve with the plain provider: its callback proofs carry no key")
  uvicorn.run(create_app(build_game()), host=SERVER_CONFIG["host"], port=SERVER_CONFIG["port"])


if __name__ == "__main__":
  command = sys.argv[1] if len(sys.argv) > 1 else "serve"
  if command == "demo":
    asyncio.run(run_demo())
  elif command == "serve":
    serve()
  else:
    print(__doc__)
    sys.exit(2)
