# main.py (project root)
from fastapi import FastAPI
import uvicorn
from app.db.mongodb import connect_to_mongo, close_mongo_connection
from app.endpoints import deployment_endpoint, maintenance_endpoint, vehicle_endpoint

app = FastAPI(title="Fleet Operations - Deployment & Maintenance Scheduling")


app.include_router(deployment_endpoint.router, prefix="/api/deployment_management")
app.include_router(maintenance_endpoint.router, prefix="/api/maintenance_management")
app.include_router(vehicle_endpoint.router, prefix="/api/vehicle_management")


@app.on_event("startup")
async def startup():
    await connect_to_mongo()


@app.on_event("shutdown")
async def shutdown():
    await close_mongo_connection()


@app.get("/")
async def root():
    return {"message": "Fleet scheduling API running"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
