import asyncio
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

import keys
from config import SERVER_CONFIG
from errors import SantaError
from santa import SecretSanta

# --------------------------
# Request models
# --------------------------

class CallerRequest(BaseModel):
  caller: str


class JoinRequest(BaseModel):
  caller: str
  password: Optional[str] = None
  public_key_b64: Optional[str] = None


class CallbackRequest(BaseModel):
  request_id: int
  cleartexts: str
  proof: str


class DecryptRequest(BaseModel):
  password: str
  ciphertext_b64: str


# --------------------------
# Helpers
# --------------------------

def http_error(e: Exception) -> HTTPException:
  status = e.status_code if isinstance(e, SantaError) else 400
  return HTTPException(status_code=status, detail=f"{type(e).__name__}: {e}")


def from_hex(value: str) -> bytes:
  return bytes.fromhex(value[2:] if value.startswith("0x") else value)


# --------------------------
# Endpoints
# --------------------------

def create_app(game: SecretSanta, auto_relay: Optional[bool] = None,
               gateway_delay: Optional[float] = None,
               dev_routes: Optional[bool] = None) -> FastAPI:
  if auto_relay is None:
    auto_relay = SERVER_CONFIG["auto_relay"]
  if dev_routes is None:
    dev_routes = SERVER_CONFIG["dev_routes"]
  if gateway_delay is None:
    gateway_delay = SERVER_CONFIG["gateway_delay"]

  app = FastAPI(title="Secret Santa API")
  app.state.game = game

  async def relay():
    # fulfill_all takes the coordinator lock; keep it off the event loop
    await asyncio.sleep(gateway_delay)
    await run_in_threadpool(game.gateway.fulfill_all)

  @app.post("/join")
  def join(req: JoinRequest):
    try:
      public_key_b64 = req.public_key_b64
      if req.password is not None:
        public_key_b64 = keys.verify_key_b64(req.password)
      index = game.join(req.caller, public_key_b64)
      return {"status": "ok", "index": index, "count": game.participant_count}
    except (SantaError, ValueError) as e:
      raise http_error(e)

  @app.post("/generate")
  def generate(req: CallerRequest):
    try:
      game.generate_matches(req.caller)
      return {"status": "ok", "message": f"Matches generated for {game.participant_count} participants"}
    except (SantaError, ValueError) as e:
      raise http_error(e)

  @app.post("/request")
  def request_match(req: CallerRequest, background_tasks: BackgroundTasks):
    try:
      request_id = game.request_match(req.caller)
    except (SantaError, ValueError) as e:
      raise http_error(e)
    if auto_relay:
      background_tasks.add_task(relay)
    return {"status": "ok", "request_id": request_id}

  @app.post("/callback")
  def callback(req: CallbackRequest):
    try:
      match_index = game.on_decryption_callback(
        req.request_id, from_hex(req.cleartexts), from_hex(req.proof)
      )
      return {"status": "ok", "match_index": match_index}
    except (SantaError, ValueError) as e:
      raise http_error(e)

  if dev_routes:
    # Unauthenticated: drives the in-process gateway by hand, local use only
    @app.post("/gateway/fulfill")
    def fulfill():
      return {"status": "ok", "revealed": len(game.gateway.fulfill_all())}

  @app.post("/reencrypt")
  def reencrypt(req: CallerRequest):
    try:
      return {"status": "ok", "ciphertext_b64": game.reencrypt_match(req.caller)}
    except (SantaError, ValueError) as e:
      raise http_error(e)

  @app.post("/decrypt")
  def decrypt(req: DecryptRequest):
    try:
      match_index = keys.decode_word(keys.open_with_password(req.password, req.ciphertext_b64))
      return {"status": "ok", "match_index": match_index, "match": game.get_participant(match_index)}
    except Exception as e:
      raise HTTPException(status_code=400, detail=str(e))

  @app.post("/reset")
  def reset(req: CallerRequest):
    try:
      game.reset(req.caller)
      return {"status": "ok", "message": "Pool reset"}
    except (SantaError, ValueError) as e:
      raise http_error(e)

  # --------------------------
  # Read-only
  # --------------------------

  @app.get("/state")
  def state():
    return {
      "admin": game.admin,
      "status": game.status.value,
      "matches_generated": game.matches_generated,
      "min_participants": game.min_participants,
      "participant_count": game.participant_count,
      "epoch": game.epoch,
    }

  @app.get("/participants")
  def participants():
    return game.get_all_participants()

  @app.get("/participants/{index}")
  def participant(index: int):
    try:
      return {"index": index, "participant": game.get_participant(index)}
    except IndexError as e:
      raise HTTPException(status_code=404, detail=str(e))

  @app.get("/joined/{identity}")
  def joined(identity: str):
    return {"identity": identity, "joined": game.has_joined(identity)}

  @app.get("/handle/{identity}")
  def handle(identity: str):
    match_handle = game.get_match_handle(identity)
    if match_handle is None:
      raise HTTPException(status_code=404, detail=f"no match handle for {identity}")
    return {"identity": identity, "handle": game.encryption.serialize(match_handle)}

  @app.get("/requests/{request_id}")
  def request_status(request_id: int):
    return {
      "request_id": request_id,
      "processed": game.is_request_processed(request_id),
      "match_index": game.revealed_match(request_id),
    }

  @app.get("/events")
  def events(name: Optional[str] = None, participant: Optional[str] = None):
    return [{"event": e.name, **e.args()} for e in game.events_for(name, participant)]

  return app
