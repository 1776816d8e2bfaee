def pago_a_dict(p):
    return {
        "id": p.id,
        "repairId": p.reparacion_id,
        "clientId": p.cliente_id,
        "amount": p.monto,
        "method": p.metodo,
        "status": p.estado,
        "externalId": p.referencia_externa,
        "createdAt": p.creado_en,
    }
